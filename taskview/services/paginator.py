"""Deterministic fixed-size pagination."""

import math
from typing import Sequence, TypeVar

T = TypeVar("T")


def total_pages(count: int, page_size: int) -> int:
    """Number of pages for ``count`` items; an empty collection still has one page."""
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    return max(1, math.ceil(count / page_size))


def clamp_page(page: int, count: int, page_size: int) -> int:
    return min(max(1, page), total_pages(count, page_size))


def paginate(collection: Sequence[T], page: int, page_size: int) -> list[T]:
    """Slice ``collection`` to ``page`` (1-based, clamped into range)."""
    page = clamp_page(page, len(collection), page_size)
    start = (page - 1) * page_size
    return list(collection[start:start + page_size])


class Paginator:
    """Current page/window state plus navigation."""

    def __init__(self, page_size: int = 10):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page = 1
        self.page_size = page_size
        self.total_count = 0

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_count, self.page_size)

    def update_total(self, count: int) -> None:
        """Record a new collection size and pull the current page back into range."""
        self.total_count = max(0, count)
        self.page = clamp_page(self.page, self.total_count, self.page_size)

    def go_to(self, page: int) -> int:
        self.page = clamp_page(page, self.total_count, self.page_size)
        return self.page

    def next_page(self) -> int:
        return self.go_to(self.page + 1)

    def previous_page(self) -> int:
        return self.go_to(self.page - 1)

    def first_page(self) -> int:
        return self.go_to(1)

    def last_page(self) -> int:
        return self.go_to(self.total_pages)

    def set_page_size(self, page_size: int) -> None:
        """Change the window size and return to page 1."""
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.page = 1

    def reset(self) -> None:
        self.page = 1

    def slice(self, collection: Sequence[T]) -> list[T]:
        self.update_total(len(collection))
        return paginate(collection, self.page, self.page_size)
