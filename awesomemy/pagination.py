"""
Pagination and listing-filter contract shared by every listing endpoint.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Postgres OFFSET is a bigint.
MAX_OFFSET = 2**63 - 1


@dataclass(frozen=True)
class PageWindow:
    page: int
    limit: int
    offset: int


@dataclass(frozen=True)
class ListingFilter:
    order_by: str = "desc"  # asc|desc on created_at
    tags: List[str] = field(default_factory=list)
    keyword: Optional[str] = None


def _parse_int(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def compute_window(raw_page: Any, raw_limit: Any, max_limit: int) -> PageWindow:
    """
    Turn raw `page`/`limit` query values into a bounded window.

    - page: defaults to 1; non-positive or unparsable -> 1
    - limit: defaults to max_limit; non-positive, unparsable or over max -> max_limit
    - offset = limit * (page - 1), with page capped so the offset fits a bigint
    """
    page = _parse_int(raw_page)
    if page is None or page < 1:
        page = 1

    limit = _parse_int(raw_limit)
    if limit is None or limit < 1 or limit > max_limit:
        limit = max_limit

    page = min(page, MAX_OFFSET // limit + 1)

    return PageWindow(page=page, limit=limit, offset=limit * (page - 1))


def build_metadata(page: int, count: int, total: int, page_size: int) -> Dict[str, int]:
    total_pages = math.ceil(total / page_size) if page_size > 0 else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "count": count,
        "total": total,
    }


def parse_listing_filter(order_by: Optional[str], tags: Optional[str], keyword: Optional[str]) -> ListingFilter:
    order = "asc" if (order_by or "").strip().lower() == "asc" else "desc"
    tag_list = [t.strip() for t in (tags or "").split(",") if t.strip()]
    kw = (keyword or "").strip() or None
    return ListingFilter(order_by=order, tags=tag_list, keyword=kw)
