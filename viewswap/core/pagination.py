"""Pagination helpers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

MAX_PAGE_SIZE = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    has_more: bool = False


def paginate(limit: int, offset: int, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    """Clamp limit/offset into the accepted window."""
    return max(1, min(limit, max_limit)), max(0, offset)


def page_of(rows: list[T], limit: int, offset: int) -> Page[T]:
    """Build a page from ``limit + 1`` fetched rows; the extra row only signals ``has_more``."""
    return Page[T](items=rows[:limit], limit=limit, offset=offset, has_more=len(rows) > limit)
