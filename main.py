from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from unitofwork.config import settings
from unitofwork.database.manager import DatabaseManager
from unitofwork.middleware.logging_md import LoggingMiddleware
from unitofwork.logging.logger import LogConfig
from unitofwork.exceptions import UnitOfWorkError
from unitofwork.exceptions.handler import BusinessException, global_exception_handler
import apps.models  # noqa: F401  registers table models in SQLModel.metadata
from apps.catalog.api.router import router as catalog_router
from apps.catalog.container import container
from apps.catalog.repository import CatalogSession


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = DatabaseManager.get_instance(session_class=CatalogSession)
    container.register_unit_of_works(manager.registrations())
    if settings.DB_DIALECT == "sqlite":
        await manager.sql.create_all()
    await manager.sql.connect()
    yield
    await container.adispose()
    await manager.sql.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Initialize logging configuration
LogConfig.setup_logging()

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(UnitOfWorkError, global_exception_handler)
app.add_exception_handler(SQLAlchemyError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

# Mount routers (prefix from config for easy override in private projects)
app.include_router(
    catalog_router,
    prefix=settings.API_V1_CATALOG_PREFIX,
    tags=["Catalog"]
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
