from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

MAX_PAGE_LIMIT = 500
DEFAULT_PAGE_LIMIT = 50

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


def normalize_limit(value: int | None, fallback: int = DEFAULT_PAGE_LIMIT) -> int:
    if not value:
        return fallback
    return min(max(value, 1), MAX_PAGE_LIMIT)


def normalize_offset(value: int | None) -> int:
    if not value:
        return 0
    return max(value, 0)
