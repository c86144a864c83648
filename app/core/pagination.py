"""Limit/offset pagination for admin listings."""

from typing import Any

from fastapi import Query
from pydantic import BaseModel

MAX_PAGE_SIZE = 200


class PageParams(BaseModel):
    limit: int
    offset: int


def page_params(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
) -> PageParams:
    """Dependency: limit capped at MAX_PAGE_SIZE."""
    return PageParams(limit=min(limit, MAX_PAGE_SIZE), offset=offset)


def page_response(key: str, items: list[Any], total: int, page: PageParams) -> dict[str, Any]:
    return {key: items, "total": total, "limit": page.limit, "offset": page.offset}
