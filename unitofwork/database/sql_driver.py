from typing import Type

from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from .base import BaseDatabaseDriver


def _engine_kwargs(url: str, echo: bool) -> dict:
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live as long as their single connection
        if ":memory:" in url or url.endswith("://"):
            kwargs["poolclass"] = StaticPool
    return kwargs


class SQLDriver(BaseDatabaseDriver):
    """Sync and async engines for one database, plus the session factories built on them."""

    def __init__(
        self,
        url: str,
        async_url: str,
        echo: bool = False,
        expire_on_commit: bool = False,
        session_class: Type[Session] = Session,
    ):
        self.engine = create_engine(url, **_engine_kwargs(url, echo))
        self.async_engine = create_async_engine(async_url, **_engine_kwargs(async_url, echo))
        self.session_factory = sessionmaker(
            self.engine, class_=session_class, expire_on_commit=expire_on_commit
        )
        self.async_session_factory = async_sessionmaker(
            self.async_engine,
            class_=AsyncSession,
            sync_session_class=session_class,
            expire_on_commit=expire_on_commit,
        )

    async def connect(self):
        """Check the database answers."""
        async with self.async_engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

    async def disconnect(self):
        """Dispose both engines' connection pools."""
        self.engine.dispose()
        await self.async_engine.dispose()

    async def create_all(self):
        """Create tables for every imported SQLModel table model."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
