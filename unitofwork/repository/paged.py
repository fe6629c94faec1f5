"""
Paged result container and the statement helpers used to fill it.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterator, Sequence, Tuple, TypeVar

from sqlalchemy import Select

from unitofwork.exceptions.errors import PagingArgumentError

T = TypeVar("T")


def check_paging(page_index: int, page_size: int, index_from: int) -> None:
    """Fail fast on paging arguments that cannot describe a page."""
    if index_from > page_index:
        raise PagingArgumentError(
            f"index_from: {index_from} > page_index: {page_index}, must index_from <= page_index"
        )
    if page_size <= 0:
        raise PagingArgumentError(f"page_size must be positive, got {page_size}")


@dataclass(frozen=True)
class PagedList(Generic[T]):
    """One materialized page plus paging metadata.

    `page_index` is numbered from `index_from` (usually 0 or 1), so the first page
    of a 1-based listing is `page_index=1, index_from=1`.
    """
    items: Tuple[T, ...]
    page_index: int
    page_size: int
    index_from: int
    total_count: int

    def __post_init__(self):
        check_paging(self.page_index, self.page_size, self.index_from)
        object.__setattr__(self, "items", tuple(self.items))

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_previous_page(self) -> bool:
        return self.page_index - self.index_from > 0

    @property
    def has_next_page(self) -> bool:
        return self.page_index - self.index_from + 1 < self.total_pages

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    @classmethod
    def from_sequence(
        cls,
        source: Sequence[T],
        page_index: int,
        page_size: int,
        index_from: int = 0,
    ) -> "PagedList[T]":
        """Page an in-memory sequence."""
        check_paging(page_index, page_size, index_from)
        start = (page_index - index_from) * page_size
        return cls(
            items=tuple(source[start:start + page_size]),
            page_index=page_index,
            page_size=page_size,
            index_from=index_from,
            total_count=len(source),
        )

    @classmethod
    def empty(cls, page_index: int = 0, page_size: int = 20, index_from: int = 0) -> "PagedList[T]":
        return cls(items=(), page_index=page_index, page_size=page_size, index_from=index_from, total_count=0)

    def to_dict(self) -> Dict[str, Any]:
        """Metadata and items as a plain dict, e.g. for API responses."""
        return {
            "page_index": self.page_index,
            "page_size": self.page_size,
            "index_from": self.index_from,
            "total_count": self.total_count,
            "total_pages": self.total_pages,
            "has_previous_page": self.has_previous_page,
            "has_next_page": self.has_next_page,
            "items": list(self.items),
        }


def page_statement(statement: Select, page_index: int, page_size: int, index_from: int) -> Select:
    return statement.offset((page_index - index_from) * page_size).limit(page_size)


def to_paged_list(source: Sequence[T], page_index: int, page_size: int, index_from: int = 0) -> PagedList[T]:
    """Page an already materialized sequence."""
    return PagedList.from_sequence(source, page_index, page_size, index_from)
