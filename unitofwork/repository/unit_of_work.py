"""
Unit of Work: manages repositories and transaction boundaries.

A unit of work owns one session, hands out one repository per entity class and
turns everything staged through them into a single commit on `save_changes`.
"""

from typing import Any, Callable, Dict, Optional, Type

from sqlalchemy import event, text
from sqlalchemy.orm import Session, SessionTransactionOrigin
from sqlmodel.ext.asyncio.session import AsyncSession

from unitofwork.exceptions.errors import UnitOfWorkDisposedError, get_messages
from unitofwork.logging.logger import get_logger
from .base import AsyncRepository, Repository
from .result import SaveChangesResult
from .state import EntityGraphNode, track_graph
from .tracking import EntityState

logger = get_logger("unit_of_work")

CUSTOM_REPOSITORIES = "custom_repositories"
RESOLVED_REPOSITORIES = "resolved_repositories"
ROWS_WRITTEN = "rows_written"

GraphCallback = Callable[[EntityGraphNode], Optional[EntityState]]


def register_custom_repository(session, entity: type, repository_cls: type) -> None:
    """Make `get_repository(entity, use_custom=True)` return a `repository_cls` on this session."""
    info = getattr(session, "sync_session", session).info
    info.setdefault(CUSTOM_REPOSITORIES, {})[entity] = repository_cls


def _count_flushed(session: Session, flush_context) -> None:
    # Pre-flush collections are still populated in after_flush.
    modified = sum(1 for obj in session.dirty if session.is_modified(obj, include_collections=False))
    session.info[ROWS_WRITTEN] += len(session.new) + len(session.deleted) + modified


def _reset_count(session: Session) -> None:
    session.info[ROWS_WRITTEN] = 0


def _track_rows_written(session: Session) -> None:
    """Count flushed rows on the session itself, once, whichever unit of work flushes."""
    if ROWS_WRITTEN in session.info:
        return
    session.info[ROWS_WRITTEN] = 0
    event.listen(session, "after_flush", _count_flushed)
    event.listen(session, "after_rollback", _reset_count)


class _UnitOfWorkBase:
    """State shared by both units of work; subclasses add the session calls."""

    repository_class: Type = Repository

    def __init__(self, session, owns_session: bool = True):
        self._session = session
        self._owns_session = owns_session
        self._repositories: Dict[type, Any] = {}
        # Root transaction taken over from autobegin by begin_transaction
        self._caller_root = None
        self._disposed = False
        self.last_save_changes_result = SaveChangesResult()

        _track_rows_written(self._sync_session)
        logger.debug(f"{type(self).__name__} opened (owns session: {owns_session})")

    @property
    def _sync_session(self) -> Session:
        return getattr(self._session, "sync_session", self._session)

    @property
    def session(self):
        """The underlying session, for anything the repositories do not cover."""
        self._ensure_active()
        return self._session

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def _ensure_active(self) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedError(f"{type(self).__name__} has been disposed")

    def _take_count(self) -> int:
        info = self._sync_session.info
        written, info[ROWS_WRITTEN] = info[ROWS_WRITTEN], 0
        return written

    def _in_caller_transaction(self) -> bool:
        """True while a transaction the caller began (or took over) is still open.

        Looked up on the session each time, so it survives savepoints ending
        and transactions begun on the session directly.
        """
        root = self._sync_session.get_transaction()
        if root is None or not root.is_active:
            return False
        return root.origin is not SessionTransactionOrigin.AUTOBEGIN or root is self._caller_root

    def _record_failure(self, exc: Exception) -> None:
        self.last_save_changes_result.exception = exc
        logger.warning(f"save_changes failed, rolling back:\n{get_messages(exc)}")

    def _custom_repository(self, entity: type):
        info = self._sync_session.info
        repository_cls = info.get(CUSTOM_REPOSITORIES, {}).get(entity)
        if repository_cls is None:
            return None
        resolved = info.setdefault(RESOLVED_REPOSITORIES, {})
        if entity not in resolved:
            logger.debug(f"Resolving custom repository {repository_cls.__name__} for {entity.__name__}")
            resolved[entity] = repository_cls(self._session, entity)
        return resolved[entity]

    def get_repository(self, entity: type, use_custom: bool = False):
        """Repository for `entity`, created on first request and cached for the life of this unit of work.

        With `use_custom`, a repository class registered for `entity` on the
        session wins; without one the generic repository is returned.
        """
        self._ensure_active()
        if use_custom:
            custom = self._custom_repository(entity)
            if custom is not None:
                return custom
        if entity not in self._repositories:
            logger.debug(f"Creating repository for {entity.__name__}")
            self._repositories[entity] = self.repository_class(self._session, entity)
        return self._repositories[entity]

    def from_sql(self, entity: type, sql: str, params: Optional[Dict[str, Any]] = None):
        """Composable statement loading `entity` rows from raw SQL."""
        return self.get_repository(entity).from_sql(sql, params)

    def set_auto_detect_changes(self, enabled: bool) -> None:
        """Toggle autoflush; when off, reads no longer see changes staged since the last save."""
        self._ensure_active()
        self._sync_session.autoflush = enabled

    def get_entity_state(self, entity: Any) -> EntityState:
        self._ensure_active()
        return self.get_repository(type(entity)).get_entity_state(entity)

    def _release(self) -> bool:
        if self._disposed:
            return False
        self._disposed = True
        self._repositories.clear()
        self._caller_root = None
        return True


class UnitOfWork(_UnitOfWorkBase):
    """Manages related repositories with a shared session and transaction commit/rollback."""

    repository_class = Repository

    def __init__(self, session: Session, owns_session: bool = True):
        super().__init__(session, owns_session)

    def begin_transaction(self, use_if_exists: bool = False):
        """Start an explicit transaction and return it; the caller commits or rolls it back.

        With a transaction already running, `use_if_exists` returns that one,
        otherwise a SAVEPOINT is started inside it. A transaction the session
        began implicitly for earlier reads is taken over as the caller's.
        """
        self._ensure_active()
        current = self._session.get_transaction()
        if current is None:
            return self._session.begin()
        if current.origin is SessionTransactionOrigin.AUTOBEGIN and not self._in_caller_transaction():
            self._caller_root = current
            return current
        if use_if_exists:
            return current
        return self._session.begin_nested()

    def save_changes(self, *peers: "UnitOfWork") -> int:
        """Persist staged changes and return how many entity rows were written.

        Peers are saved first, one after another, each in its own transaction;
        a failure in one does not undo the others. A failed save returns 0 and
        leaves the error in `last_save_changes_result`.
        """
        self._ensure_active()
        total = 0
        for peer in peers:
            total += peer.save_changes()
        return total + self._save()

    def _save(self) -> int:
        try:
            self._session.flush()
            if not self._in_caller_transaction():
                self._session.commit()
        except Exception as exc:
            self._record_failure(exc)
            self._rollback_quietly()
            return 0
        return self._take_count()

    def _rollback_quietly(self) -> None:
        # Inside a SAVEPOINT only the savepoint goes; the caller's outer transaction stays open.
        try:
            nested = self._session.get_nested_transaction()
            if nested is not None:
                nested.rollback()
            else:
                self._session.rollback()
        except Exception as exc:
            logger.error(f"Rollback after failed save also failed: {get_messages(exc)}")
        _reset_count(self._sync_session)

    def execute_sql(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Run a raw SQL command now and return the affected row count."""
        self._ensure_active()
        return self._session.execute(text(sql), params or {}).rowcount

    def track_graph(self, root: Any, callback: GraphCallback) -> int:
        """Attach a detached object graph, letting `callback` choose each node's state."""
        self._ensure_active()
        return track_graph(self._session, root, callback)

    def dispose(self) -> None:
        """Release the repositories and, when owned, close the session. Safe to call twice."""
        if not self._release():
            return
        if self._owns_session:
            self._session.close()
            logger.debug("UnitOfWork disposed, session closed")

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()


class AsyncUnitOfWork(_UnitOfWorkBase):
    """Async twin of UnitOfWork over an AsyncSession."""

    repository_class = AsyncRepository

    def __init__(self, session: AsyncSession, owns_session: bool = True):
        super().__init__(session, owns_session)

    async def begin_transaction(self, use_if_exists: bool = False):
        self._ensure_active()
        current = self._sync_session.get_transaction()
        if current is None:
            return await self._session.begin()
        if current.origin is SessionTransactionOrigin.AUTOBEGIN and not self._in_caller_transaction():
            self._caller_root = current
            return self._session.get_transaction()
        if use_if_exists:
            return self._session.get_transaction()
        return await self._session.begin_nested()

    async def save_changes(self, *peers: "AsyncUnitOfWork") -> int:
        """Persist staged changes and return how many entity rows were written."""
        self._ensure_active()
        total = 0
        for peer in peers:
            total += await peer.save_changes()
        return total + await self._save()

    async def _save(self) -> int:
        try:
            await self._session.flush()
            if not self._in_caller_transaction():
                await self._session.commit()
        except Exception as exc:
            self._record_failure(exc)
            await self._rollback_quietly()
            return 0
        return self._take_count()

    async def _rollback_quietly(self) -> None:
        try:
            nested = self._session.get_nested_transaction()
            if nested is not None:
                await nested.rollback()
            else:
                await self._session.rollback()
        except Exception as exc:
            logger.error(f"Rollback after failed save also failed: {get_messages(exc)}")
        _reset_count(self._sync_session)

    async def execute_sql(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        self._ensure_active()
        result = await self._session.execute(text(sql), params or {})
        return result.rowcount

    async def track_graph(self, root: Any, callback: GraphCallback) -> int:
        self._ensure_active()
        return await self._session.run_sync(track_graph, root, callback)

    async def dispose(self) -> None:
        if not self._release():
            return
        if self._owns_session:
            await self._session.close()
            logger.debug("AsyncUnitOfWork disposed, session closed")

    async def __aenter__(self) -> "AsyncUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()
