"""Offset pagination over already-filtered result lists."""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import get_config


@dataclass
class Page:
    """One page of results plus the totals the API reports"""
    items: List[Any] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def meta(self) -> Dict[str, int]:
        return {
            'page': self.page,
            'limit': self.limit,
            'total': self.total,
            'total_pages': self.total_pages,
        }


def paginate(items: List[Any], page: int = 1, limit: Optional[int] = None) -> Page:
    """
    Slice ``items`` to the requested 1-based page

    ``limit`` falls back to the configured default page size and is capped at
    the configured maximum.
    """
    config = get_config()
    page = max(page, 1)
    limit = min(max(limit or config.default_page_size, 1), config.max_page_size)
    start = (page - 1) * limit
    return Page(items=items[start:start + limit], total=len(items), page=page, limit=limit)
