"""Test config and shared fixtures."""
import pytest
from typing import AsyncGenerator, Callable, Generator, List
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import apps.models  # noqa: F401
from apps.catalog.models import Category, Widget
from apps.catalog.repository import CatalogSession, WidgetRepository
from unitofwork.container import SessionRegistration, UnitOfWorkContainer
from unitofwork.dependencies import provide_unit_of_work
from unitofwork.repository import AsyncUnitOfWork, UnitOfWork


# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def engine():
    """Sync engine over a fresh in-memory database."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(engine, class_=CatalogSession, expire_on_commit=False)


@pytest.fixture
def uow(session_factory) -> Generator[UnitOfWork, None, None]:
    unit_of_work = UnitOfWork(session_factory())
    yield unit_of_work
    unit_of_work.dispose()


@pytest.fixture
def seed_widgets(session_factory) -> Callable[..., List[Widget]]:
    """Insert widgets named widget-01.. in one committed session and return them (detached)."""
    def _seed(count: int, category: str = None, archived: int = 0) -> List[Widget]:
        with session_factory() as session:
            owner = Category(name=category) if category else None
            widgets = [
                Widget(name=f"widget-{i:02d}", price=float(i), category=owner, is_archived=i <= archived)
                for i in range(1, count + 1)
            ]
            session.add_all(widgets)
            session.commit()
            return widgets
    return _seed


@pytest.fixture
async def async_engine():
    """Async engine over a fresh in-memory database."""
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def async_session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        sync_session_class=CatalogSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def async_uow(async_session_factory) -> AsyncGenerator[AsyncUnitOfWork, None]:
    unit_of_work = AsyncUnitOfWork(async_session_factory())
    yield unit_of_work
    await unit_of_work.dispose()


@pytest.fixture
async def client(async_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose units of work run on the in-memory database."""
    from main import app
    from apps.catalog.container import get_uow

    container = UnitOfWorkContainer()
    container.register_custom_repository(Widget, WidgetRepository)
    container.register_unit_of_work(
        SessionRegistration(session_factory=async_session_factory, key=AsyncSession)
    )
    app.dependency_overrides[get_uow] = provide_unit_of_work(container, AsyncSession)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await container.adispose()
