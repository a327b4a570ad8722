"""Pagination helpers shared by the listing routes."""

from typing import Optional

from fastapi import Response

from forgequota.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TOTAL_COUNT_HEADER


def page_window(page: int = 1, limit: Optional[int] = None) -> tuple[int, int]:
    """Translate 1-based ``page`` / ``limit`` query params into ``(offset, limit)``."""
    size = DEFAULT_PAGE_SIZE if not limit or limit < 1 else min(limit, MAX_PAGE_SIZE)
    page = max(page, 1)
    return (page - 1) * size, size


def set_total_count(response: Response, total: int) -> None:
    response.headers[TOTAL_COUNT_HEADER] = str(total)
