"""Pagination over in-memory lists."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, TypeVar

from quorum.schemas.result import Page, PaginationOptions

T = TypeVar("T")

MAX_LIMIT = 100


def normalize(options: PaginationOptions | None) -> PaginationOptions:
    """Clamp page to >= 1 and limit to [1, MAX_LIMIT]."""
    options = options or PaginationOptions()
    direction = "desc" if options.sort_direction.lower() == "desc" else "asc"
    return options.model_copy(update={
        "page": max(1, options.page),
        "limit": min(MAX_LIMIT, max(1, options.limit)),
        "sort_direction": direction,
    })


def _sort_value(item: Any, attribute: str) -> Any:
    if isinstance(item, dict):
        return item.get(attribute)
    return getattr(item, attribute, None)


def paginate(items: Sequence[T], options: PaginationOptions | None = None) -> Page[T]:
    """Slice *items* into the requested page.

    Items keep their given order unless ``sort_by`` names an attribute;
    entries missing that attribute sort last in either direction.

    Args:
        items: Full result list.
        options: Paging and sorting request; None means page 1, limit 10.

    Returns:
        A Page whose ``page_count`` is ``ceil(total / limit)`` (0 when empty).
    """
    opts = normalize(options)
    ordered = list(items)
    if opts.sort_by:
        present = [i for i in ordered if _sort_value(i, opts.sort_by) is not None]
        missing = [i for i in ordered if _sort_value(i, opts.sort_by) is None]
        present.sort(
            key=lambda i: _sort_value(i, opts.sort_by),
            reverse=opts.sort_direction == "desc",
        )
        ordered = present + missing

    total = len(ordered)
    start = (opts.page - 1) * opts.limit
    return Page(
        items=ordered[start:start + opts.limit],
        total=total,
        page=opts.page,
        page_count=math.ceil(total / opts.limit),
    )
