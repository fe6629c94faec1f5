"""
Query composition shared by the sync and async repositories, plus entity-level query filters.
"""

from typing import Any, Callable, Dict, Generic, Iterable, Optional, Sequence, Set, Tuple, Type, TypeVar, Union

from sqlalchemy import ColumnElement, Select, delete, event, func, text, update
from sqlalchemy import select as sa_select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import ORMExecuteState, Session, lazyload, with_loader_criteria
from sqlalchemy.orm.interfaces import ORMOption
from sqlmodel import SQLModel, select

from .tracking import TrackingType

T = TypeVar("T", bound=SQLModel)

Predicate = ColumnElement[bool]
OrderBy = Callable[[Select], Select]
Selector = Union[Any, Sequence[Any]]

TRACKING_OPTION = "unitofwork_tracking"
PROJECTION_OPTION = "unitofwork_projection"
IGNORE_QUERY_FILTERS_OPTION = "ignore_query_filters"

# Listen target -> (entity class -> criteria); one do_orm_execute listener per target.
_query_filters: Dict[Any, Dict[type, Any]] = {}
_listeners: Dict[Any, Callable[[ORMExecuteState], None]] = {}


def _apply_query_filters(filters: Dict[type, Any], orm_execute_state: ORMExecuteState) -> None:
    if not filters or not isinstance(orm_execute_state.statement, Select):
        return
    # Loader criteria already propagate into lazy/eager loads and column refreshes.
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return
    if orm_execute_state.execution_options.get(IGNORE_QUERY_FILTERS_OPTION, False):
        return
    orm_execute_state.statement = orm_execute_state.statement.options(
        *(
            with_loader_criteria(entity, criteria, include_aliases=True)
            for entity, criteria in filters.items()
        )
    )


def add_query_filter(target: Any, entity: type, criteria: Any) -> None:
    """Register a default WHERE criteria for `entity` (e.g. soft delete) on `target`.

    `target` is anything SQLAlchemy session events listen on: a Session, a
    sessionmaker, or the Session class itself; an AsyncSession is reached
    through its sync session. `criteria` is a boolean expression or a lambda
    taking the entity class. Reads opt out with `ignore_query_filters=True`.
    A second registration for the same entity and target replaces the first.
    """
    target = getattr(target, "sync_session", target)
    filters = _query_filters.setdefault(target, {})
    filters[entity] = criteria
    if target not in _listeners:
        def listener(orm_execute_state: ORMExecuteState) -> None:
            _apply_query_filters(filters, orm_execute_state)

        event.listen(target, "do_orm_execute", listener)
        _listeners[target] = listener


def remove_query_filter(target: Any, entity: type) -> None:
    target = getattr(target, "sync_session", target)
    filters = _query_filters.get(target)
    if filters is None:
        return
    filters.pop(entity, None)
    if not filters:
        del _query_filters[target]
        event.remove(target, "do_orm_execute", _listeners.pop(target))


class IdentitySnapshot:
    """Identity map contents before a read, used to detach what the read brought in."""

    def __init__(self, session: Session):
        self.session = session
        self.keys: Set[Any] = set(session.identity_map.keys())
        self.pending: Set[int] = {id(obj) for obj in session.new}

    def detach_loaded(self) -> None:
        # Rows that autoflush turned from pending into persistent are the caller's, keep them.
        for key in set(self.session.identity_map.keys()) - self.keys:
            obj = self.session.identity_map.get(key)
            if obj is not None and id(obj) not in self.pending:
                self.session.expunge(obj)


class QueryComposer(Generic[T]):
    """Builds statements for one entity class; subclasses execute them."""

    def __init__(self, session, model: Type[T]):
        """Bind to a session and an entity class."""
        self.session = session
        self.model = model

    def compose(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> Select:
        """Compose tracking, includes, predicate, ignore flags, ordering, then projection.

        The order is fixed so ordering sees the fully filtered set and projection
        happens last. Paging is applied by the callers that page. A projection
        selects no entities, so loader options (includes, ignore_auto_includes)
        are left out when `selector` is given.
        """
        statement = select(self.model).execution_options(**{TRACKING_OPTION: TrackingType(tracking)})
        if include and selector is None:
            statement = statement.options(*include)
        if predicate is not None:
            statement = statement.where(predicate)
        if ignore_query_filters:
            statement = statement.execution_options(**{IGNORE_QUERY_FILTERS_OPTION: True})
        if ignore_auto_includes and selector is None:
            statement = statement.options(lazyload("*"))
        if order_by is not None:
            statement = order_by(statement)
        if selector is not None:
            statement = self.project(statement, selector)
        return statement

    @staticmethod
    def project(statement: Select, selector: Selector) -> Select:
        """Replace the selected entity with `selector`, keeping FROM, WHERE and ORDER BY."""
        columns = list(selector) if isinstance(selector, (list, tuple)) else [selector]
        statement = statement.with_only_columns(*columns, maintain_column_froms=True)
        return statement.execution_options(**{PROJECTION_OPTION: "scalar" if len(columns) == 1 else "rows"})

    @staticmethod
    def tracking_of(statement) -> TrackingType:
        return statement.get_execution_options().get(TRACKING_OPTION, TrackingType.NO_TRACKING)

    @staticmethod
    def projection_of(statement) -> Optional[str]:
        return statement.get_execution_options().get(PROJECTION_OPTION)

    def _filtered(self, statement: Select, predicate: Optional[Predicate]) -> Select:
        return statement.where(predicate) if predicate is not None else statement

    def count_statement(self, predicate: Optional[Predicate] = None, ignore_query_filters: bool = False) -> Select:
        statement = self._filtered(sa_select(func.count()).select_from(self.model), predicate)
        if ignore_query_filters:
            statement = statement.execution_options(**{IGNORE_QUERY_FILTERS_OPTION: True})
        return statement

    def exists_statement(self, predicate: Optional[Predicate] = None) -> Select:
        # First key column of at most one row; selecting from the entity keeps query filters in force.
        mapper = sa_inspect(self.model)
        key_column = getattr(self.model, mapper.get_property_by_column(mapper.primary_key[0]).key)
        return self._filtered(sa_select(key_column).select_from(self.model), predicate).limit(1)

    def aggregate_statement(self, function: str, selector: Any, predicate: Optional[Predicate] = None) -> Select:
        return self._filtered(sa_select(getattr(func, function)(selector)).select_from(self.model), predicate)

    def update_statement(self, values: Dict[str, Any], predicate: Optional[Predicate] = None):
        statement = update(self.model).values(**values)
        if predicate is not None:
            statement = statement.where(predicate)
        return statement.execution_options(synchronize_session=False)

    def delete_statement(self, predicate: Optional[Predicate] = None):
        statement = delete(self.model)
        if predicate is not None:
            statement = statement.where(predicate)
        return statement.execution_options(synchronize_session=False)

    def from_sql(self, sql: str, params: Optional[Dict[str, Any]] = None):
        """Entities loaded from a raw SQL string with named bind parameters."""
        clause = text(sql)
        if params:
            clause = clause.bindparams(**params)
        return select(self.model).from_statement(clause)

    def get_all(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Optional[OrderBy] = None,
        include: Optional[Iterable[ORMOption]] = None,
        tracking: TrackingType = TrackingType.NO_TRACKING,
        ignore_query_filters: bool = False,
        ignore_auto_includes: bool = False,
        selector: Optional[Selector] = None,
    ) -> Select:
        """Lazy composed query; nothing runs until it is materialized.

        Not recommended for large tables, prefer the paged or first-or-default reads.
        Pass the statement to `materialize` so the tracking mode is honoured.
        """
        return self.compose(
            predicate=predicate,
            order_by=order_by,
            include=include,
            tracking=tracking,
            ignore_query_filters=ignore_query_filters,
            ignore_auto_includes=ignore_auto_includes,
            selector=selector,
        )

    def key_stub(self, key: Any) -> Optional[T]:
        """An instance carrying only `key`, or None when the key cannot be set that way."""
        name = self.key_property()
        if name is None or isinstance(key, tuple):
            return None
        try:
            stub = self.model()
        except TypeError:
            # Constructor insists on more than the key
            return None
        setattr(stub, name, key)
        return stub

    def key_property(self) -> Optional[str]:
        """Attribute name of a single-column primary key, None for composite keys."""
        mapper = sa_inspect(self.model)
        if len(mapper.primary_key) != 1:
            return None
        return mapper.get_property_by_column(mapper.primary_key[0]).key

    @staticmethod
    def key_tuple(key_values: Tuple[Any, ...]) -> Any:
        return key_values[0] if len(key_values) == 1 else tuple(key_values)
