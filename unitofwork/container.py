"""
Composition root: session registrations, lifetimes and scopes for units of work.

Register one or more session factories, then resolve units of work (or
factories) from a scope:

    container = UnitOfWorkContainer()
    container.register_unit_of_work(SessionRegistration(session_factory=sessionmaker(engine)))
    with container.scope() as scope:
        uow = scope.unit_of_work()

Scoped instances live as long as their scope, singletons as long as the
container, transients are new on every resolution and disposed with the scope
that resolved them. Transients resolved on the container itself belong to the
caller, who disposes them.
"""

import inspect
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import sessionmaker

from unitofwork.exceptions.errors import RegistrationError, UnitOfWorkDisposedError, UnitOfWorkError
from unitofwork.logging.logger import get_logger
from unitofwork.repository.factory import AsyncUnitOfWorkFactory, UnitOfWorkFactory
from unitofwork.repository.unit_of_work import AsyncUnitOfWork, UnitOfWork, register_custom_repository

logger = get_logger("container")

UNIT_OF_WORK = "unit_of_work"
UNIT_OF_WORK_FACTORY = "unit_of_work_factory"


class ServiceLifetime(str, Enum):
    SINGLETON = "singleton"
    SCOPED = "scoped"
    TRANSIENT = "transient"


class SessionRegistration(BaseModel):
    """A session factory registered under a key (by default its session class)."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_factory: Union[sessionmaker, async_sessionmaker]
    lifetime: ServiceLifetime = ServiceLifetime.SCOPED
    key: Optional[Any] = None

    @model_validator(mode="after")
    def default_key(self) -> "SessionRegistration":
        if self.key is None:
            self.key = self.session_factory.class_
        return self

    @property
    def is_async(self) -> bool:
        return issubclass(self.session_factory.class_, AsyncSession)


class Scope:
    """Owns the scoped (and transient) instances it resolves; closing disposes them."""

    def __init__(self, container: "UnitOfWorkContainer", root: Optional["Scope"] = None):
        self._container = container
        self._root = root or self
        self._instances: Dict[Tuple[str, Any], Any] = {}
        self._transients: List[Any] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def unit_of_work(self, key: Any = None) -> Union[UnitOfWork, AsyncUnitOfWork]:
        return self._resolve(UNIT_OF_WORK, key)

    def unit_of_work_factory(self, key: Any = None) -> Union[UnitOfWorkFactory, AsyncUnitOfWorkFactory]:
        return self._resolve(UNIT_OF_WORK_FACTORY, key)

    def _resolve(self, kind: str, key: Any):
        if self._closed:
            raise UnitOfWorkDisposedError("Scope has been closed")
        registration = self._container.registration(kind, key)
        if registration.lifetime is ServiceLifetime.TRANSIENT:
            instance = self._container.create(kind, registration)
            # The root scope lives as long as the container; its transients are the caller's to dispose.
            if self is not self._root:
                self._transients.append(instance)
            return instance

        owner = self._root if registration.lifetime is ServiceLifetime.SINGLETON else self
        cache_key = (kind, registration.key)
        if cache_key not in owner._instances:
            owner._instances[cache_key] = self._container.create(kind, registration)
        return owner._instances[cache_key]

    def _owned(self) -> List[Any]:
        return list(self._instances.values()) + self._transients

    def close(self) -> None:
        if self._closed:
            return
        owned = self._owned()
        if any(isinstance(obj, (AsyncUnitOfWork, AsyncUnitOfWorkFactory)) for obj in owned):
            raise UnitOfWorkError("Scope holds async units of work, close it with aclose()")
        self._closed = True
        for obj in reversed(owned):
            obj.dispose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for obj in reversed(self._owned()):
            result = obj.dispose()
            if inspect.isawaitable(result):
                await result

    def __enter__(self) -> "Scope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    async def __aenter__(self) -> "Scope":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class UnitOfWorkContainer:
    """Registration hooks plus resolution of units of work and their factories."""

    def __init__(self):
        self._registrations: Dict[str, Dict[Any, SessionRegistration]] = {
            UNIT_OF_WORK: {},
            UNIT_OF_WORK_FACTORY: {},
        }
        self._default_keys: Dict[str, Any] = {}
        self._custom_repositories: Dict[type, type] = {}
        self._root = Scope(self)

    # --- registration ---

    def register_unit_of_work(self, registration: SessionRegistration) -> "UnitOfWorkContainer":
        """Register a unit of work over `registration`; the latest one answers unkeyed requests."""
        self._registrations[UNIT_OF_WORK][registration.key] = registration
        self._default_keys[UNIT_OF_WORK] = registration.key
        logger.debug(f"Registered unit of work for {registration.key!r} ({registration.lifetime.value})")
        return self

    def register_unit_of_works(self, registrations: Iterable[SessionRegistration]) -> "UnitOfWorkContainer":
        """Register several session contexts at once; each must have its own key."""
        registrations = list(registrations)
        keys = [registration.key for registration in registrations]
        if len(set(keys)) != len(keys):
            raise RegistrationError(f"Duplicate session keys in registrations: {keys!r}")
        for registration in registrations:
            self.register_unit_of_work(registration)
        return self

    def register_unit_of_work_factory(self, registration: SessionRegistration) -> "UnitOfWorkContainer":
        """Register a unit of work factory; a second one for the same key is ignored."""
        factories = self._registrations[UNIT_OF_WORK_FACTORY]
        if registration.key in factories:
            logger.debug(f"Unit of work factory for {registration.key!r} already registered, skipped")
            return self
        factories[registration.key] = registration
        self._default_keys.setdefault(UNIT_OF_WORK_FACTORY, registration.key)
        return self

    def register_custom_repository(self, entity: type, repository_cls: type) -> "UnitOfWorkContainer":
        """Serve `repository_cls` for `entity` from `get_repository(entity, use_custom=True)`."""
        self._custom_repositories[entity] = repository_cls
        return self

    # --- resolution ---

    def registration(self, kind: str, key: Any = None) -> SessionRegistration:
        registrations = self._registrations[kind]
        if key is None:
            key = self._default_keys.get(kind)
        if key not in registrations:
            raise RegistrationError(f"No {kind.replace('_', ' ')} registered for {key!r}")
        return registrations[key]

    def create(self, kind: str, registration: SessionRegistration):
        if kind == UNIT_OF_WORK:
            session = registration.session_factory()
            self._install_repositories(session)
            uow_cls = AsyncUnitOfWork if registration.is_async else UnitOfWork
            return uow_cls(session)

        factory_cls = AsyncUnitOfWorkFactory if registration.is_async else UnitOfWorkFactory
        factory = factory_cls(registration.session_factory)
        self._install_repositories(factory.session)
        return factory

    def _install_repositories(self, session) -> None:
        for entity, repository_cls in self._custom_repositories.items():
            register_custom_repository(session, entity, repository_cls)

    def scope(self) -> Scope:
        return Scope(self, root=self._root)

    def unit_of_work(self, key: Any = None) -> Union[UnitOfWork, AsyncUnitOfWork]:
        """Resolve outside any scope; scoped registrations then live as long as the container.

        Transient units of work resolved here are not tracked; dispose them yourself.
        """
        return self._root.unit_of_work(key)

    def unit_of_work_factory(self, key: Any = None) -> Union[UnitOfWorkFactory, AsyncUnitOfWorkFactory]:
        return self._root.unit_of_work_factory(key)

    def dispose(self) -> None:
        self._root.close()

    async def adispose(self) -> None:
        await self._root.aclose()
