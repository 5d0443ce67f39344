"""Offset pagination helpers shared by the list endpoints."""

from __future__ import annotations

MAX_PAGE_SIZE = 100


def clamp_page(page: int, limit: int) -> tuple[int, int]:
    return max(1, page), min(max(1, limit), MAX_PAGE_SIZE)


def pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
