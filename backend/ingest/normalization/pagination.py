"""Offset pagination over already normalized, deduplicated results."""
from __future__ import annotations

import math
from typing import Sequence, TypeVar

from shared.models.domain import CanonicalMatch, MatchPage, MatchQuery, PaginationInfo
from shared.models.enums import DataSource

T = TypeVar("T")


def pagination_info(total: int, page: int, limit: int) -> PaginationInfo:
    page = max(1, page)
    limit = max(1, limit)
    return PaginationInfo(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
        has_more=page * limit < total,
    )


def paginate(items: Sequence[T], page: int, limit: int) -> tuple[list[T], PaginationInfo]:
    """
    Slice one page out of items.

    25 items, limit 10: page 2 -> items 11-20 (has_more), page 3 -> 21-25.
    """
    info = pagination_info(len(items), page, limit)
    start = (info.page - 1) * info.limit
    return list(items[start : start + info.limit]), info


def build_page(items: Sequence[CanonicalMatch], query: MatchQuery, source: DataSource) -> MatchPage:
    matches, info = paginate(items, query.page, query.limit)
    return MatchPage(matches=matches, pagination=info, source=source)
