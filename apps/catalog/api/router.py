from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from pydantic import BaseModel, Field
from unitofwork.repository import AsyncUnitOfWork
from unitofwork.response import ResponseModel
from ..container import get_uow
from ..service import CatalogService, widget_dump

router = APIRouter()


class WidgetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: float = Field(default=0, ge=0)
    category: Optional[str] = Field(default=None, max_length=100)
    tags: List[str] = Field(default_factory=list)


def get_catalog_service(uow: AsyncUnitOfWork = Depends(get_uow)) -> CatalogService:
    """Dependency: create CatalogService."""
    return CatalogService(uow)


@router.post("/widgets")
async def create_widget(
    payload: WidgetCreate,
    service: CatalogService = Depends(get_catalog_service)
):
    widget = await service.create_widget(
        name=payload.name,
        price=payload.price,
        category_name=payload.category,
        tags=payload.tags,
    )
    return ResponseModel.success(data=widget_dump(widget))


@router.get("/widgets")
async def list_widgets(
    page_index: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    search: Optional[str] = None,
    include_archived: bool = False,
    service: CatalogService = Depends(get_catalog_service)
):
    """Paged widget list, ordered by id."""
    page = await service.list_widgets(page_index, page_size, search, include_archived)
    return ResponseModel.paged(page, widget_dump)


@router.get("/widgets/{widget_id}")
async def get_widget(
    widget_id: int,
    service: CatalogService = Depends(get_catalog_service)
):
    widget = await service.get_widget(widget_id)
    return ResponseModel.success(data=widget_dump(widget))


@router.post("/widgets/{widget_id}/archive")
async def archive_widget(
    widget_id: int,
    service: CatalogService = Depends(get_catalog_service)
):
    await service.archive_widget(widget_id)
    return ResponseModel.success(data={"id": widget_id, "is_archived": True})


@router.delete("/widgets/{widget_id}")
async def delete_widget(
    widget_id: int,
    service: CatalogService = Depends(get_catalog_service)
):
    await service.delete_widget(widget_id)
    return ResponseModel.success(data={"id": widget_id})
