"""Limit/offset helpers for list endpoints."""

from typing import Any, Sequence

MAX_PAGE_SIZE = 100


def paginate(limit: int, offset: int, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    return max(1, min(limit, max_limit)), max(0, offset)


def page(key: str, items: Sequence[Any], limit: int, offset: int) -> dict[str, Any]:
    """Response envelope: the items under `key` plus the window that produced them."""
    return {key: list(items), "limit": limit, "offset": offset, "count": len(items)}
