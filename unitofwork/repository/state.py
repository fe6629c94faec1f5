"""
Explicit entity state transitions on a SQLAlchemy session.

SQLAlchemy derives state from instrumentation instead of a settable flag, so
each EntityState is reached by the session calls that produce it. All helpers
take the synchronous Session; async callers go through AsyncSession.run_sync.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, make_transient, make_transient_to_detached
from sqlalchemy.orm.attributes import flag_modified, set_committed_value
from sqlalchemy.orm.util import identity_key

from unitofwork.exceptions.errors import UnitOfWorkError
from .tracking import EntityState


@dataclass
class EntityGraphNode:
    """A node reached while walking a detached object graph."""
    entity: Any
    source_entity: Optional[Any] = None
    inbound_navigation: Optional[str] = None


def get_entity_state(session: Session, entity: Any) -> EntityState:
    if entity not in session:
        return EntityState.DETACHED
    if sa_inspect(entity).pending:
        return EntityState.ADDED
    if entity in session.deleted:
        return EntityState.DELETED
    if session.is_modified(entity, include_collections=False):
        return EntityState.MODIFIED
    return EntityState.UNCHANGED


def _require_key(entity: Any) -> None:
    mapper = sa_inspect(entity).mapper
    if any(value is None for value in mapper.primary_key_from_instance(entity)):
        raise UnitOfWorkError(
            f"{type(entity).__name__} has no primary key value; only ADDED applies to it"
        )


def _attach_persistent(session: Session, entity: Any) -> None:
    """Make `entity` persistent in `session` without loading it."""
    insp = sa_inspect(entity)
    if insp.pending or entity in session.deleted:
        session.expunge(entity)
    if insp.transient:
        _require_key(entity)
        make_transient_to_detached(entity)
    if insp.detached:
        session.add(entity)


def apply_state(session: Session, entity: Any, state: EntityState) -> None:
    """Force `entity` into `state` within `session`."""
    insp = sa_inspect(entity)

    if state is EntityState.DETACHED:
        if entity in session:
            session.expunge(entity)
        return

    if state is EntityState.ADDED:
        if insp.pending and entity in session:
            return
        if entity in session:
            session.expunge(entity)
        if insp.detached:
            make_transient(entity)
        session.add(entity)
        return

    _attach_persistent(session, entity)
    column_keys = [prop.key for prop in insp.mapper.column_attrs]

    if state is EntityState.UNCHANGED:
        for key in column_keys:
            if key in insp.dict:
                set_committed_value(entity, key, insp.dict[key])
    elif state is EntityState.MODIFIED:
        primary_keys = {insp.mapper.get_property_by_column(col).key for col in insp.mapper.primary_key}
        for key in column_keys:
            if key in insp.dict and key not in primary_keys:
                flag_modified(entity, key)
    elif state is EntityState.DELETED:
        session.delete(entity)


def tracked_instance(session: Session, entity: Any) -> Optional[Any]:
    """The instance the session already holds for `entity`'s primary key, if any."""
    return session.identity_map.get(identity_key(instance=entity))


def stage_delete(session: Session, entity: Any) -> None:
    """Mark `entity` for removal at the next flush without loading it."""
    insp = sa_inspect(entity)
    if insp.pending:
        # Never written, so removal just forgets it
        session.expunge(entity)
        return
    if entity not in session:
        tracked = tracked_instance(session, entity)
        if tracked is not None:
            session.delete(tracked)
            return
    apply_state(session, entity, EntityState.DELETED)


def _navigations(entity: Any) -> Iterator[Tuple[str, Any]]:
    # Only already-populated relationships; walking must not trigger loads.
    insp = sa_inspect(entity)
    for relationship in insp.mapper.relationships:
        value = insp.dict.get(relationship.key)
        if value is None:
            continue
        if relationship.uselist:
            for item in value:
                yield relationship.key, item
        else:
            yield relationship.key, value


def track_graph(
    session: Session,
    root: Any,
    callback: Callable[[EntityGraphNode], Optional[EntityState]],
) -> int:
    """Walk the graph under `root` breadth-first and let `callback` pick each node's state.

    Nodes already in the session, and nodes the callback leaves detached (None or
    DETACHED), are not traversed further. States are applied leaves first so that
    save-update cascades from parents find their children already placed.
    Returns the number of entities that were attached.
    """
    decisions: List[Tuple[Any, EntityState]] = []
    visited = set()
    queue = deque([EntityGraphNode(entity=root)])

    while queue:
        node = queue.popleft()
        if id(node.entity) in visited:
            continue
        visited.add(id(node.entity))
        if node.entity in session:
            continue

        state = callback(node)
        if state is None or state is EntityState.DETACHED:
            continue
        decisions.append((node.entity, state))

        for navigation, child in _navigations(node.entity):
            queue.append(EntityGraphNode(entity=child, source_entity=node.entity, inbound_navigation=navigation))

    with session.no_autoflush:
        for entity, state in reversed(decisions):
            apply_state(session, entity, state)
    return len(decisions)
