import math
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int


def stable_sort(
    rows: Sequence[T],
    key: Callable[[T], Optional[Any]],
    descending: bool = False,
) -> List[T]:
    """Sort rows by key, keeping input order for ties.

    Rows whose key is None go to the end in either direction.
    """
    present = [row for row in rows if key(row) is not None]
    missing = [row for row in rows if key(row) is None]
    # sorted() is stable for reverse=True as well
    present = sorted(present, key=key, reverse=descending)
    return present + missing


def paginate(rows: Sequence[T], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Page[T]:
    if page_size < 1:
        raise ValueError("page_size must be positive")
    page = max(page, 1)
    total = len(rows)
    start = (page - 1) * page_size
    return Page(
        items=list(rows[start:start + page_size]),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )
