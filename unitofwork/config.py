from typing import Optional
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Basic configuration ---
    APP_NAME: str = "Unit of Work Catalog"
    APP_DESCRIPTION: str = "Repository and Unit of Work layer over SQLModel, with a demo catalog API"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"  # development, production, testing
    DEBUG: bool = True

    # --- Database (SQLModel) ---
    DB_DIALECT: str = "sqlite"  # sqlite, mysql
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "root"
    DB_NAME: str = "app_db"
    DB_ECHO: bool = False
    # Keep loaded attributes readable after commit (detached reads, API responses)
    DB_EXPIRE_ON_COMMIT: bool = False

    @property
    def DATABASE_URL(self) -> str:
        # Sync connection URL
        if self.DB_DIALECT == "sqlite":
            return f"sqlite:///{self.DB_NAME}.db"
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"mysql+pymysql://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        # Async connection URL
        if self.DB_DIALECT == "sqlite":
            return f"sqlite+aiosqlite:///{self.DB_NAME}.db"
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"mysql+aiomysql://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Repository / Unit of Work defaults ---
    DEFAULT_PAGE_SIZE: int = 20
    UOW_LIFETIME: str = "scoped"  # singleton, scoped, transient

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True

    # --- API route prefixes (optional, overridable in private projects) ---
    API_V1_CATALOG_PREFIX: str = "/api/v1/catalog"

    # --- Pydantic ---
    # Load env from project root .env; priority: env vars > .env > defaults
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )


# Singleton settings instance
settings = Settings()
