from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime, timezone


class Category(SQLModel, table=True):
    __tablename__ = "categories"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True, max_length=100)

    widgets: List["Widget"] = Relationship(back_populates="category")


class Widget(SQLModel, table=True):
    """Catalog item; archived widgets are hidden from reads by a query filter."""
    __tablename__ = "widgets"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, max_length=100)
    price: float = Field(default=0, ge=0)
    is_archived: bool = Field(default=False, index=True, description="Soft delete flag")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    category_id: Optional[int] = Field(default=None, foreign_key="categories.id", index=True)
    # Auto-included on every read unless ignore_auto_includes is set
    category: Optional[Category] = Relationship(
        back_populates="widgets", sa_relationship_kwargs={"lazy": "joined"}
    )
    tags: List["WidgetTag"] = Relationship(
        back_populates="widget", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class WidgetTag(SQLModel, table=True):
    """Tag on a widget; keyed by (widget_id, tag)."""
    __tablename__ = "widget_tags"

    widget_id: int = Field(foreign_key="widgets.id", primary_key=True)
    tag: str = Field(primary_key=True, max_length=50)

    widget: Optional[Widget] = Relationship(back_populates="tags")
