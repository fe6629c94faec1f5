"""Unit of work container for the catalog app; sessions are registered at startup."""
from sqlmodel.ext.asyncio.session import AsyncSession

from unitofwork.container import UnitOfWorkContainer
from unitofwork.dependencies import provide_unit_of_work
from .models import Widget
from .repository import WidgetRepository

container = UnitOfWorkContainer()
container.register_custom_repository(Widget, WidgetRepository)

get_uow = provide_unit_of_work(container, AsyncSession)
