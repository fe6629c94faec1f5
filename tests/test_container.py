"""Container registration and lifetime test cases."""
import gc
import weakref

import pytest
from types import SimpleNamespace
from sqlmodel import Session
from sqlmodel.ext.asyncio.session import AsyncSession

from apps.catalog.models import Category, Widget
from apps.catalog.repository import WidgetRepository
from unitofwork.database.manager import DatabaseManager
from unitofwork.container import ServiceLifetime, SessionRegistration, UnitOfWorkContainer
from unitofwork.exceptions import RegistrationError, UnitOfWorkDisposedError, UnitOfWorkError
from unitofwork.repository import (
    AsyncUnitOfWork,
    AsyncUnitOfWorkFactory,
    Repository,
    UnitOfWork,
    UnitOfWorkFactory,
)


def sync_registration(session_factory, lifetime=ServiceLifetime.SCOPED, key=Session):
    return SessionRegistration(session_factory=session_factory, lifetime=lifetime, key=key)


class TestSessionRegistration:
    """Registration defaults."""

    def test_key_defaults_to_session_class(self, session_factory):
        registration = SessionRegistration(session_factory=session_factory)

        assert registration.key is session_factory.class_
        assert registration.lifetime is ServiceLifetime.SCOPED
        assert registration.is_async is False

    def test_async_factory_is_detected(self, async_session_factory):
        registration = SessionRegistration(session_factory=async_session_factory)

        assert registration.key is AsyncSession
        assert registration.is_async is True


class TestLifetimes:
    """Scoped, singleton and transient resolution."""

    def test_scoped_is_shared_within_a_scope(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(sync_registration(session_factory))

        with container.scope() as scope:
            first = scope.unit_of_work()
            assert scope.unit_of_work() is first
            assert isinstance(first, UnitOfWork)
        with container.scope() as scope:
            assert scope.unit_of_work() is not first

        assert first.is_disposed

    def test_singleton_outlives_scopes(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(
            sync_registration(session_factory, ServiceLifetime.SINGLETON)
        )

        with container.scope() as scope:
            first = scope.unit_of_work()
        with container.scope() as scope:
            assert scope.unit_of_work() is first

        assert not first.is_disposed
        container.dispose()
        assert first.is_disposed

    def test_transient_is_new_every_time(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(
            sync_registration(session_factory, ServiceLifetime.TRANSIENT)
        )

        with container.scope() as scope:
            first = scope.unit_of_work()
            second = scope.unit_of_work()
            assert first is not second
            assert first.session is not second.session

        assert first.is_disposed and second.is_disposed

    def test_container_transients_belong_to_caller(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(
            sync_registration(session_factory, ServiceLifetime.TRANSIENT)
        )

        uow = container.unit_of_work()
        released = weakref.ref(uow)
        uow.dispose()
        del uow
        gc.collect()
        assert released() is None

        held = container.unit_of_work()
        container.dispose()
        assert not held.is_disposed
        held.dispose()

    def test_closed_scope_refuses_resolution(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(sync_registration(session_factory))
        scope = container.scope()
        scope.close()

        with pytest.raises(UnitOfWorkDisposedError):
            scope.unit_of_work()


class TestKeys:
    """Several session contexts side by side."""

    def test_default_is_last_registered(self, session_factory, async_session_factory):
        container = UnitOfWorkContainer().register_unit_of_works([
            sync_registration(session_factory),
            SessionRegistration(session_factory=async_session_factory, key=AsyncSession),
        ])

        assert isinstance(container.unit_of_work(), AsyncUnitOfWork)
        assert isinstance(container.unit_of_work(Session), UnitOfWork)

    def test_duplicate_keys_are_rejected(self, session_factory):
        container = UnitOfWorkContainer()

        with pytest.raises(RegistrationError, match="Duplicate"):
            container.register_unit_of_works([
                sync_registration(session_factory),
                sync_registration(session_factory),
            ])

    def test_unknown_key(self, session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(sync_registration(session_factory))

        with pytest.raises(RegistrationError):
            container.unit_of_work(AsyncSession)

    def test_nothing_registered(self):
        with pytest.raises(RegistrationError):
            UnitOfWorkContainer().unit_of_work()

    def test_first_factory_registration_wins(self, session_factory, async_session_factory):
        container = UnitOfWorkContainer()
        container.register_unit_of_work_factory(sync_registration(session_factory))
        container.register_unit_of_work_factory(
            SessionRegistration(session_factory=async_session_factory, key=Session)
        )

        with container.scope() as scope:
            assert isinstance(scope.unit_of_work_factory(), UnitOfWorkFactory)


class TestCustomRepositories:
    """Repositories registered on the container."""

    def test_installed_into_resolved_units(self, session_factory):
        class CategoryRepository(Repository[Category]):
            pass

        container = UnitOfWorkContainer()
        container.register_custom_repository(Category, CategoryRepository)
        container.register_unit_of_work(sync_registration(session_factory))

        with container.scope() as scope:
            uow = scope.unit_of_work()
            assert isinstance(uow.get_repository(Category, use_custom=True), CategoryRepository)
            assert type(uow.get_repository(Widget, use_custom=True)) is Repository

    def test_installed_into_factory_session(self, session_factory):
        class CategoryRepository(Repository[Category]):
            pass

        container = UnitOfWorkContainer()
        container.register_custom_repository(Category, CategoryRepository)
        container.register_unit_of_work_factory(sync_registration(session_factory))

        with container.scope() as scope:
            uow = scope.unit_of_work_factory().create_unit_of_work()
            assert isinstance(uow.get_repository(Category, use_custom=True), CategoryRepository)


class TestAsyncScopes:
    """Async units of work are closed with aclose()."""

    @pytest.mark.asyncio
    async def test_sync_close_is_refused(self, async_session_factory):
        container = UnitOfWorkContainer().register_unit_of_work(
            SessionRegistration(session_factory=async_session_factory)
        )
        scope = container.scope()
        uow = scope.unit_of_work()

        with pytest.raises(UnitOfWorkError, match="aclose"):
            scope.close()

        await scope.aclose()
        assert uow.is_disposed

    @pytest.mark.asyncio
    async def test_async_scope_round_trip(self, async_session_factory):
        container = UnitOfWorkContainer()
        container.register_custom_repository(Widget, WidgetRepository)
        container.register_unit_of_work(SessionRegistration(session_factory=async_session_factory))

        async with container.scope() as scope:
            uow = scope.unit_of_work()
            widgets = uow.get_repository(Widget, use_custom=True)
            await widgets.insert(Widget(name="sprocket"))
            assert await uow.save_changes() == 1
            assert (await widgets.find_by_name("sprocket")) is not None

        async with container.scope() as scope:
            assert await scope.unit_of_work().get_repository(Widget).count() == 1

        await container.adispose()

    @pytest.mark.asyncio
    async def test_async_factory_resolution(self, async_session_factory):
        container = UnitOfWorkContainer().register_unit_of_work_factory(
            SessionRegistration(session_factory=async_session_factory, lifetime=ServiceLifetime.SINGLETON)
        )

        async with container.scope() as scope:
            factory = scope.unit_of_work_factory()
            assert isinstance(factory, AsyncUnitOfWorkFactory)

        assert not factory.is_disposed
        await container.adispose()
        assert factory.is_disposed


class TestDatabaseManagerRegistrations:
    """Session contexts produced by the database manager."""

    @pytest.mark.asyncio
    async def test_sync_and_async_contexts(self):
        settings = SimpleNamespace(
            DATABASE_URL="sqlite://",
            ASYNC_DATABASE_URL="sqlite+aiosqlite://",
            DB_ECHO=False,
            DB_EXPIRE_ON_COMMIT=False,
            UOW_LIFETIME="Transient",
        )
        manager = DatabaseManager(settings)
        registrations = manager.registrations()

        assert [r.key for r in registrations] == [Session, AsyncSession]
        assert {r.lifetime for r in registrations} == {ServiceLifetime.TRANSIENT}

        container = UnitOfWorkContainer().register_unit_of_works(registrations)
        async with container.scope() as scope:
            assert isinstance(scope.unit_of_work(), AsyncUnitOfWork)
            assert isinstance(scope.unit_of_work(Session), UnitOfWork)
        await manager.sql.disconnect()
