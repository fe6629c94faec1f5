"""
Generic repositories: one per entity class, bound to the session of a unit of work.

`Repository` works on a sqlmodel `Session`, `AsyncRepository` on an `AsyncSession`.
Both compose queries the same way (see QueryComposer); the async one awaits the
session where the sync one blocks. Writes only stage changes in the session,
nothing is persisted until the owning unit of work saves.
"""

from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from sqlalchemy.orm.interfaces import ORMOption
from sqlalchemy.orm.util import identity_key
from sqlmodel import Session, SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel.sql.expression import SelectOfScalar

from unitofwork.config import settings
from unitofwork.logging.logger import get_logger
from .paged import PagedList, check_paging, page_statement
from .query import IdentitySnapshot, OrderBy, Predicate, QueryComposer, Selector
from .state import apply_state, get_entity_state, stage_delete
from .tracking import EntityState, TrackingType

T = TypeVar("T", bound=SQLModel)

logger = get_logger("repository")


class Repository(QueryComposer[T]):
    """Generic repository over a sync Session; subclass it for entity-specific queries."""

    session: Session

    def __init__(self, session: Session, model: Type[T]):
        super().__init__(session, model)

    # --- reads ---

    def materialize(self, statement) -> List[Any]:
        """Run a statement built by this repository, honouring its tracking mode."""
        snapshot = None
        if not self.tracking_of(statement).is_tracking:
            snapshot = IdentitySnapshot(self.session)

        projection = self.projection_of(statement)
        if projection is None:
            if isinstance(statement, SelectOfScalar):
                entities = self.session.exec(statement)
            else:
                # e.g. from_sql statements
                entities = self.session.execute(statement).scalars()
            rows = list(entities.unique().all())
        elif projection == "scalar":
            rows = list(self.session.execute(statement).scalars().all())
        else:
            rows = list(self.session.execute(statement).all())

        if snapshot is not None:
            snapshot.detach_loaded()
        return rows

    def find(self, *key_values: Any) -> Optional[T]:
        """Entity by primary key (one value per key column), attached to the session; None if absent."""
        return self.session.get(self.model, self.key_tuple(key_values))

    def get_list(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> List[Any]:
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        return self.materialize(statement)

    def get_first_or_default(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> Optional[Any]:
        """First match of the composed query, or None when nothing matches."""
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        rows = self.materialize(statement.limit(1))
        return rows[0] if rows else None

    def get_paged_list(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        page_index: int = 0,
        page_size: Optional[int] = None,
        index_from: int = 0,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> PagedList[Any]:
        """One page of the composed query.

        The total is a count of the filtered set (not paged); the items are an
        offset/limit over the ordered set. Pass `order_by` whenever the backend
        needs a stable order for paging.
        """
        if page_size is None:
            page_size = settings.DEFAULT_PAGE_SIZE
        check_paging(page_index, page_size, index_from)
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        total_count = self.session.execute(self.count_statement(predicate, ignore_query_filters)).scalar_one()
        items = self.materialize(page_statement(statement, page_index, page_size, index_from))
        return PagedList(
            items=items,
            page_index=page_index,
            page_size=page_size,
            index_from=index_from,
            total_count=total_count,
        )

    def count(self, predicate: Optional[Predicate] = None) -> int:
        return self.session.execute(self.count_statement(predicate)).scalar_one()

    def long_count(self, predicate: Optional[Predicate] = None) -> int:
        # Python ints do not overflow; kept for callers ported from 32/64-bit counts.
        return self.count(predicate)

    def exists(self, predicate: Optional[Predicate] = None) -> bool:
        return self.session.execute(self.exists_statement(predicate)).scalar() is not None

    def max(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return self.session.execute(self.aggregate_statement("max", selector, predicate)).scalar()

    def min(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return self.session.execute(self.aggregate_statement("min", selector, predicate)).scalar()

    def average(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        """Average of `selector`; what an empty set yields is up to the database (usually None)."""
        return self.session.execute(self.aggregate_statement("avg", selector, predicate)).scalar()

    def sum(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return self.session.execute(self.aggregate_statement("sum", selector, predicate)).scalar()

    # --- staged writes ---

    def insert(self, entity: T) -> T:
        """Stage an insert; keys generated by the database appear after save."""
        self.session.add(entity)
        return entity

    def insert_many(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)
        self.session.add_all(entities)
        return entities

    def update(self, entity: T) -> T:
        """Stage an update and return the instance the session tracks for it.

        Detached or hand-built instances are merged onto the tracked copy.
        """
        return self.session.merge(entity)

    def update_many(self, entities: Iterable[T]) -> List[T]:
        return [self.update(entity) for entity in entities]

    def delete(self, entity: T) -> None:
        stage_delete(self.session, entity)

    def delete_many(self, entities: Iterable[T]) -> None:
        for entity in entities:
            stage_delete(self.session, entity)

    def delete_by_id(self, key: Any) -> None:
        """Stage removal of the row with primary key `key` (a tuple for composite keys).

        Without loading when possible: the tracked instance, else a stub carrying
        just the key. Falls back to load-then-delete when no stub can be built;
        a missing row is then a no-op.
        """
        tracked = self.session.identity_map.get(identity_key(self.model, key))
        if tracked is not None:
            self.session.delete(tracked)
            return

        stub = self.key_stub(key)
        if stub is not None:
            apply_state(self.session, stub, EntityState.DELETED)
            return

        logger.debug(f"No key stub for {self.model.__name__}, loading {key!r} before delete")
        entity = self.find(*key) if isinstance(key, tuple) else self.find(key)
        if entity is not None:
            self.session.delete(entity)

    def change_entity_state(self, entity: T, state: EntityState) -> None:
        """Override the tracked state of `entity` (e.g. MODIFIED for PATCH-style updates)."""
        apply_state(self.session, entity, EntityState(state))

    def get_entity_state(self, entity: T) -> EntityState:
        return get_entity_state(self.session, entity)

    # --- immediate bulk writes ---

    def execute_update(self, values: Dict[str, Any], predicate: Optional[Predicate] = None) -> int:
        """Set-based UPDATE issued now; tracked instances are not refreshed.

        Returns the number of rows the database reports as updated.
        """
        return self.session.execute(self.update_statement(values, predicate)).rowcount

    def execute_delete(self, predicate: Optional[Predicate] = None) -> int:
        """Set-based DELETE issued now; tracked instances are left as they are."""
        return self.session.execute(self.delete_statement(predicate)).rowcount


class AsyncRepository(QueryComposer[T]):
    """Generic repository over an AsyncSession; same operations as Repository, awaited.

    Cancelling the awaiting task cancels the database call in flight.
    """

    session: AsyncSession

    def __init__(self, session: AsyncSession, model: Type[T]):
        super().__init__(session, model)

    # --- reads ---

    async def materialize(self, statement) -> List[Any]:
        """Run a statement built by this repository, honouring its tracking mode."""
        snapshot = None
        if not self.tracking_of(statement).is_tracking:
            snapshot = IdentitySnapshot(self.session.sync_session)

        projection = self.projection_of(statement)
        if projection is None:
            if isinstance(statement, SelectOfScalar):
                entities = await self.session.exec(statement)
            else:
                entities = (await self.session.execute(statement)).scalars()
            rows = list(entities.unique().all())
        elif projection == "scalar":
            result = await self.session.execute(statement)
            rows = list(result.scalars().all())
        else:
            result = await self.session.execute(statement)
            rows = list(result.all())

        if snapshot is not None:
            snapshot.detach_loaded()
        return rows

    async def find(self, *key_values: Any) -> Optional[T]:
        return await self.session.get(self.model, self.key_tuple(key_values))

    async def get_list(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> List[Any]:
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        return await self.materialize(statement)

    async def get_first_or_default(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> Optional[Any]:
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        rows = await self.materialize(statement.limit(1))
        return rows[0] if rows else None

    async def get_paged_list(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        page_index: int = 0,
        page_size: Optional[int] = None,
        index_from: int = 0,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> PagedList[Any]:
        if page_size is None:
            page_size = settings.DEFAULT_PAGE_SIZE
        check_paging(page_index, page_size, index_from)
        statement = self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )
        total_count = (await self.session.execute(self.count_statement(predicate, ignore_query_filters))).scalar_one()
        items = await self.materialize(page_statement(statement, page_index, page_size, index_from))
        return PagedList(
            items=items,
            page_index=page_index,
            page_size=page_size,
            index_from=index_from,
            total_count=total_count,
        )

    async def count(self, predicate: Optional[Predicate] = None) -> int:
        return (await self.session.execute(self.count_statement(predicate))).scalar_one()

    async def long_count(self, predicate: Optional[Predicate] = None) -> int:
        return await self.count(predicate)

    async def exists(self, predicate: Optional[Predicate] = None) -> bool:
        return (await self.session.execute(self.exists_statement(predicate))).scalar() is not None

    async def max(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return (await self.session.execute(self.aggregate_statement("max", selector, predicate))).scalar()

    async def min(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return (await self.session.execute(self.aggregate_statement("min", selector, predicate))).scalar()

    async def average(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return (await self.session.execute(self.aggregate_statement("avg", selector, predicate))).scalar()

    async def sum(self, selector: Any, predicate: Optional[Predicate] = None) -> Any:
        return (await self.session.execute(self.aggregate_statement("sum", selector, predicate))).scalar()

    # --- staged writes ---

    async def insert(self, entity: T) -> T:
        self.session.add(entity)
        return entity

    async def insert_many(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)
        self.session.add_all(entities)
        return entities

    async def update(self, entity: T) -> T:
        return await self.session.merge(entity)

    async def update_many(self, entities: Iterable[T]) -> List[T]:
        return [await self.update(entity) for entity in entities]

    async def delete(self, entity: T) -> None:
        await self.session.run_sync(stage_delete, entity)

    async def delete_many(self, entities: Iterable[T]) -> None:
        for entity in entities:
            await self.session.run_sync(stage_delete, entity)

    async def delete_by_id(self, key: Any) -> None:
        tracked = self.session.identity_map.get(identity_key(self.model, key))
        if tracked is not None:
            await self.session.delete(tracked)
            return

        stub = self.key_stub(key)
        if stub is not None:
            await self.session.run_sync(apply_state, stub, EntityState.DELETED)
            return

        logger.debug(f"No key stub for {self.model.__name__}, loading {key!r} before delete")
        entity = await (self.find(*key) if isinstance(key, tuple) else self.find(key))
        if entity is not None:
            await self.session.delete(entity)

    async def change_entity_state(self, entity: T, state: EntityState) -> None:
        await self.session.run_sync(apply_state, entity, EntityState(state))

    def get_entity_state(self, entity: T) -> EntityState:
        return get_entity_state(self.session.sync_session, entity)

    # --- immediate bulk writes ---

    async def execute_update(self, values: Dict[str, Any], predicate: Optional[Predicate] = None) -> int:
        return (await self.session.execute(self.update_statement(values, predicate))).rowcount

    async def execute_delete(self, predicate: Optional[Predicate] = None) -> int:
        return (await self.session.execute(self.delete_statement(predicate))).rowcount
