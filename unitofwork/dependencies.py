"""
FastAPI dependency providers backed by a UnitOfWorkContainer.
"""

from typing import Any, AsyncIterator, Callable

from unitofwork.container import UnitOfWorkContainer


def provide_unit_of_work(container: UnitOfWorkContainer, key: Any = None) -> Callable[[], AsyncIterator[Any]]:
    """Dependency yielding a unit of work from a per-request scope, closed after the response.

    Usage: `uow: AsyncUnitOfWork = Depends(provide_unit_of_work(container, AsyncSession))`
    """

    async def dependency() -> AsyncIterator[Any]:
        async with container.scope() as scope:
            yield scope.unit_of_work(key)

    return dependency
