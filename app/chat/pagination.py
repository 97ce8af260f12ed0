"""
Offset pagination for chat listings.

Conversation lists, message lists and search results all return the same
pagination metadata so clients can render "load more" uniformly:

    {"page": 2, "limit": 50, "total": 130, "total_pages": 3, "has_more": true}

Design Decisions:
    - Page numbers are 1-based
    - limit is clamped to [1, max_limit]; callers pass their own maximum
    - The service layer paginates querysets; views only render the result
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def clamp_limit(limit: Any, default: int, max_limit: int) -> int:
    """Coerce a user-supplied limit into [1, max_limit]."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(value, max_limit))


def clamp_page(page: Any) -> int:
    try:
        return max(1, int(page))
    except (TypeError, ValueError):
        return 1


@dataclass
class PageResult(Generic[T]):
    """One page of results plus pagination metadata."""

    items: list[T] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    @property
    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_more": self.has_more,
        }


def paginate(queryset, page: int, limit: int) -> PageResult:
    """Slice a queryset with 1-based offset paging."""
    total = queryset.count()
    offset = (page - 1) * limit
    items = list(queryset[offset : offset + limit])
    return PageResult(items=items, page=page, limit=limit, total=total)
