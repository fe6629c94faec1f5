from typing import Any, Dict, List, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import selectinload

from unitofwork.exceptions.errors import get_messages
from unitofwork.exceptions.handler import BusinessException
from unitofwork.logging.logger import get_logger
from unitofwork.repository import AsyncUnitOfWork, PagedList, TrackingType
from .models import Category, Widget, WidgetTag
from .repository import WidgetRepository

logger = get_logger("catalog_service")


def widget_dump(widget: Widget) -> Dict[str, Any]:
    """JSON-ready widget, with its category name and any tags already loaded."""
    data = widget.model_dump(mode="json")
    category = sa_inspect(widget).dict.get("category")
    data["category"] = category.name if category is not None else None
    tags = sa_inspect(widget).dict.get("tags")
    if tags is not None:
        data["tags"] = sorted(tag.tag for tag in tags)
    return data


class CatalogService:
    """Widget catalog use cases, each one unit of work."""

    def __init__(self, uow: AsyncUnitOfWork):
        self.uow = uow

    @property
    def widgets(self) -> WidgetRepository:
        return self.uow.get_repository(Widget, use_custom=True)

    async def _save(self, action: str) -> int:
        result = self.uow.last_save_changes_result
        previous = result.exception
        written = await self.uow.save_changes()
        # The result keeps the last failure; only a new exception means this save failed
        if result.exception is not None and result.exception is not previous:
            logger.warning(f"{action} failed: {get_messages(result.exception)}")
            raise BusinessException(f"{action} failed", code=409)
        return written

    async def create_widget(
        self,
        name: str,
        price: float = 0,
        category_name: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Widget:
        if await self.widgets.find_by_name(name) is not None:
            raise BusinessException(f"Widget '{name}' already exists", code=400)

        widget = Widget(name=name, price=price)
        if category_name:
            categories = self.uow.get_repository(Category)
            category = await categories.get_first_or_default(
                predicate=Category.name == category_name, tracking=TrackingType.TRACKING
            )
            if category is None:
                category = await categories.insert(Category(name=category_name))
            widget.category = category
        widget.tags = [WidgetTag(tag=tag) for tag in sorted(set(tags or []))]

        await self.widgets.insert(widget)
        await self._save("Create widget")
        logger.info(f"Widget {widget.id} '{name}' created")
        return widget

    async def list_widgets(
        self,
        page_index: int = 0,
        page_size: Optional[int] = None,
        search: Optional[str] = None,
        include_archived: bool = False,
    ) -> PagedList[Widget]:
        return await self.widgets.list_page(page_index, page_size, search, include_archived)

    async def get_widget(self, widget_id: int) -> Widget:
        widget = await self.widgets.get_first_or_default(
            predicate=Widget.id == widget_id,
            include=[selectinload(Widget.tags)],
        )
        if widget is None:
            raise BusinessException("Widget not found", status_code=404, code=404)
        return widget

    async def archive_widget(self, widget_id: int) -> None:
        if await self.widgets.archive(widget_id) == 0:
            raise BusinessException("Widget not found", status_code=404, code=404)
        await self._save("Archive widget")

    async def delete_widget(self, widget_id: int) -> None:
        if not await self.widgets.exists(Widget.id == widget_id):
            raise BusinessException("Widget not found", status_code=404, code=404)
        await self.widgets.delete_by_id(widget_id)
        await self._save("Delete widget")
        logger.info(f"Widget {widget_id} deleted")
