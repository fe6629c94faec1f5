"""
Exceptions raised by the repository and unit of work layer.
"""

from typing import Optional


class UnitOfWorkError(Exception):
    """Base class for unit of work errors."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnitOfWorkDisposedError(UnitOfWorkError):
    """Raised when a disposed unit of work (or factory) is used again."""


class RegistrationError(UnitOfWorkError):
    """Raised when the container is asked for something it cannot provide."""


class PagingArgumentError(UnitOfWorkError, ValueError):
    """Raised for invalid paging arguments (index origin past page index, non-positive size)."""


def get_messages(exception: Optional[BaseException]) -> str:
    """Collect messages of an exception and every exception chained to it, outermost first."""
    if exception is None:
        return "Exception is None"

    messages = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current) or current.__class__.__name__)
        current = current.__cause__ or current.__context__
    return "\n".join(messages)
