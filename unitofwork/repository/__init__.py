"""
Repository pattern: data access abstraction, decouples service layer from database session.
"""

from .base import AsyncRepository, Repository
from .factory import AsyncUnitOfWorkFactory, UnitOfWorkFactory
from .paged import PagedList, to_paged_list
from .query import add_query_filter, remove_query_filter
from .result import SaveChangesResult
from .state import EntityGraphNode
from .tracking import EntityState, TrackingType
from .unit_of_work import AsyncUnitOfWork, UnitOfWork, register_custom_repository

__all__ = [
    "AsyncRepository",
    "AsyncUnitOfWork",
    "AsyncUnitOfWorkFactory",
    "EntityGraphNode",
    "EntityState",
    "PagedList",
    "Repository",
    "SaveChangesResult",
    "TrackingType",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "add_query_filter",
    "register_custom_repository",
    "remove_query_filter",
    "to_paged_list",
]
