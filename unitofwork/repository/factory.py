"""
Factories handing out units of work over one long-lived session.
"""

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import sessionmaker

from unitofwork.exceptions.errors import UnitOfWorkDisposedError
from unitofwork.logging.logger import get_logger
from .unit_of_work import AsyncUnitOfWork, UnitOfWork

logger = get_logger("unit_of_work")


class UnitOfWorkFactory:
    """Creates units of work that share the factory's session.

    The factory owns the session; units of work it creates never close it.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session = session_factory()
        self._disposed = False

    @property
    def session(self):
        return self._session

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def create_unit_of_work(self) -> UnitOfWork:
        if self._disposed:
            raise UnitOfWorkDisposedError("UnitOfWorkFactory has been disposed")
        return UnitOfWork(self._session, owns_session=False)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._session.close()
        logger.debug("UnitOfWorkFactory disposed, session closed")

    def __enter__(self) -> "UnitOfWorkFactory":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()


class AsyncUnitOfWorkFactory:
    """Async twin of UnitOfWorkFactory over an async_sessionmaker."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session = session_factory()
        self._disposed = False

    @property
    def session(self):
        return self._session

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def create_unit_of_work(self) -> AsyncUnitOfWork:
        if self._disposed:
            raise UnitOfWorkDisposedError("AsyncUnitOfWorkFactory has been disposed")
        return AsyncUnitOfWork(self._session, owns_session=False)

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self._session.close()
        logger.debug("AsyncUnitOfWorkFactory disposed, session closed")

    async def __aenter__(self) -> "AsyncUnitOfWorkFactory":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()
