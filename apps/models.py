"""
Model registration: import every table model here so SQLModel.metadata knows it
before tables are created. Add/remove imports when adding/removing apps.
"""
from apps.catalog.models import Category, Widget, WidgetTag

__all__ = ["Category", "Widget", "WidgetTag"]
