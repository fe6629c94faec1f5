from .errors import (
    PagingArgumentError,
    RegistrationError,
    UnitOfWorkDisposedError,
    UnitOfWorkError,
    get_messages,
)

__all__ = [
    "PagingArgumentError",
    "RegistrationError",
    "UnitOfWorkDisposedError",
    "UnitOfWorkError",
    "get_messages",
]
