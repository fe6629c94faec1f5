from typing import List, Type

from sqlmodel import Session
from sqlmodel.ext.asyncio.session import AsyncSession

from unitofwork.container import ServiceLifetime, SessionRegistration
from .sql_driver import SQLDriver


class DatabaseManager:
    _instance = None

    def __init__(self, settings, session_class: Type[Session] = Session):
        self.settings = settings
        self.sql = SQLDriver(
            settings.DATABASE_URL,
            settings.ASYNC_DATABASE_URL,
            echo=settings.DB_ECHO,
            expire_on_commit=settings.DB_EXPIRE_ON_COMMIT,
            session_class=session_class,
        )

    def registrations(self) -> List[SessionRegistration]:
        """Container registrations keyed `Session` (sync) and `AsyncSession` (async), async last."""
        lifetime = ServiceLifetime(self.settings.UOW_LIFETIME.lower())
        return [
            SessionRegistration(session_factory=self.sql.session_factory, lifetime=lifetime, key=Session),
            SessionRegistration(session_factory=self.sql.async_session_factory, lifetime=lifetime, key=AsyncSession),
        ]

    @classmethod
    def get_instance(cls, settings=None, session_class: Type[Session] = Session):
        if cls._instance is None:
            if settings is None:
                from unitofwork.config import settings as app_settings
                settings = app_settings
            cls._instance = cls(settings, session_class)
        return cls._instance

    @classmethod
    def reset_instance(cls):
        cls._instance = None
