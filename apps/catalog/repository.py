"""Catalog module repository implementation."""

from typing import Optional

from sqlmodel import Session, col

from unitofwork.repository import AsyncRepository, PagedList, TrackingType, add_query_filter
from .models import Widget


class CatalogSession(Session):
    """Session class for catalog databases; the catalog query filters listen on it."""


# Archived widgets stay out of reads unless ignore_query_filters is set
add_query_filter(CatalogSession, Widget, lambda cls: cls.is_archived == False)  # noqa: E712


class WidgetRepository(AsyncRepository[Widget]):
    """Widget repository."""

    def __init__(self, session, model=Widget):
        super().__init__(session, model)

    async def find_by_name(self, name: str, tracking: TrackingType = TrackingType.NO_TRACKING) -> Optional[Widget]:
        return await self.get_first_or_default(predicate=Widget.name == name, tracking=tracking)

    async def list_page(
        self,
        page_index: int = 0,
        page_size: Optional[int] = None,
        search: Optional[str] = None,
        include_archived: bool = False,
    ) -> PagedList[Widget]:
        """Widgets ordered by id, optionally filtered by a name substring."""
        predicate = col(Widget.name).contains(search) if search else None
        return await self.get_paged_list(
            predicate=predicate,
            order_by=lambda statement: statement.order_by(col(Widget.id)),
            page_index=page_index,
            page_size=page_size,
            ignore_query_filters=include_archived,
        )

    async def archive(self, widget_id: int) -> int:
        """Flag a widget archived in place; returns 1 when it existed."""
        return await self.execute_update({"is_archived": True}, Widget.id == widget_id)
