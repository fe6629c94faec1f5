"""
Outcome of the most recent save on a unit of work.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SaveChangesResult:
    """Last save failure plus free-text diagnostic messages.

    `exception` is overwritten by every failed save; `messages` only grows.
    """
    exception: Optional[BaseException] = None
    messages: List[str] = field(default_factory=list)

    @classmethod
    def with_message(cls, message: str) -> "SaveChangesResult":
        result = cls()
        result.add_message(message)
        return result

    @property
    def is_ok(self) -> bool:
        """True when no failure has been recorded."""
        return self.exception is None

    def add_message(self, message: str) -> None:
        self.messages.append(message)
