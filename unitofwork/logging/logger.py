import sys
from pathlib import Path
from contextvars import ContextVar
from typing import Optional
from loguru import logger
from fastapi import Request
from unitofwork.config import settings

DEFAULT_TRACE_ID = "system"

# Store current request in contextvars for async context
_current_request: ContextVar[Optional[Request]] = ContextVar("current_request", default=None)

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>Trace:{extra[trace_id]}</magenta> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | Trace:{extra[trace_id]} - {message}"


class LogConfig:
    """Global logging configuration using Loguru."""
    @classmethod
    def setup_logging(cls, level: Optional[str] = None):
        level = level or settings.LOG_LEVEL
        logger.remove()
        logger.configure(extra={"trace_id": DEFAULT_TRACE_ID, "name": settings.APP_NAME})

        logger.add(sys.stdout, enqueue=True, backtrace=True, diagnose=True, format=LOG_FORMAT, level=level)

        if not settings.LOG_TO_FILE:
            return

        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(exist_ok=True)

        logger.add(
            log_dir / "app_{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="30 days",
            compression="zip",
            enqueue=True,
            format=FILE_FORMAT,
            level="DEBUG",
        )

        # Failed saves and rollbacks, kept apart for alerting
        logger.add(
            log_dir / "error_{time:YYYY-MM-DD}.log",
            level="WARNING",
            rotation="100 MB",
            enqueue=True,
            format=FILE_FORMAT,
            filter=lambda record: record["extra"].get("name") in ("unit_of_work", "exception_handler"),
        )


def _request_trace_id(record) -> None:
    # Resolved per record: module-level loggers outlive any single request.
    request = _current_request.get()
    if request is not None and record["extra"].get("trace_id", DEFAULT_TRACE_ID) == DEFAULT_TRACE_ID:
        record["extra"]["trace_id"] = getattr(request.state, "trace_id", "unknown")


def get_logger(name: str = None, request: Optional[Request] = None):
    """Get a logger named `name`; the trace id comes from `request`, else the request being served."""
    bound = logger.bind(name=name) if name else logger
    if request is not None:
        bound = bound.bind(trace_id=getattr(request.state, "trace_id", "unknown"))
    return bound.patch(_request_trace_id)
