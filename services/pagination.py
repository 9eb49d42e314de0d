"""Single-pass pagination over aggregation results."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, NamedTuple, Sequence, TypeVar

from services.errors import InvalidPagination

T = TypeVar("T")

TOTAL_COUNT_KEY = "totalCount"
DATA_KEY = "data"


class PageNumbers(NamedTuple):
    total_pages: int
    current_page: int


@dataclass
class PageResult(Generic[T]):
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    data: List[T] = field(default_factory=list)


@dataclass(frozen=True)
class Paginate:
    """``$facet`` stage producing the total count and one page in one traversal."""

    limit: int
    page: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def to_document(self) -> Dict[str, Any]:
        return {
            "$facet": {
                TOTAL_COUNT_KEY: [{"$count": TOTAL_COUNT_KEY}],
                DATA_KEY: [{"$skip": self.skip}, {"$limit": self.limit}],
            }
        }


def calculate_pagination(total_count: int, limit: int, page: int) -> PageNumbers:
    """Derive page metadata, clamping requested pages past the end."""
    total_pages = math.ceil(total_count / limit) if total_count > 0 else 0
    current_page = min(page, total_pages) if total_pages > 0 else 1
    return PageNumbers(total_pages=total_pages, current_page=current_page)


class Paginator:

    def __init__(self, limit: int, page: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidPagination(limit, page)
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidPagination(limit, page)
        self.limit = limit
        self.page = page

    def stage(self) -> Paginate:
        return Paginate(limit=self.limit, page=self.page)

    def result(self, documents: Sequence[Dict[str, Any]]) -> PageResult[Dict[str, Any]]:
        """Shape the output of :meth:`stage` into a :class:`PageResult`.

        The facet yields a single document; an empty ``totalCount`` branch
        means no records matched.
        """
        facet = documents[0] if documents else {}
        counts = facet.get(TOTAL_COUNT_KEY) or []
        total_count = int(counts[0].get(TOTAL_COUNT_KEY, 0)) if counts else 0
        data = list(facet.get(DATA_KEY) or [])
        numbers = calculate_pagination(total_count, self.limit, self.page)
        return PageResult(
            total_count=total_count,
            total_pages=numbers.total_pages,
            current_page=numbers.current_page,
            data=data,
        )
