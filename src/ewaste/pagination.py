from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import InvalidInput


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page:
    items: list[dict]
    total: int
    request: PageRequest
    pagination: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.pagination = page_links(self.request, self.total)

    def as_response(self) -> dict:
        return {
            "success": True,
            "count": len(self.items),
            "total": self.total,
            "pagination": self.pagination,
            "data": self.items,
        }


def page_links(req: PageRequest, total: int) -> dict:
    links: dict[str, dict] = {}
    if req.page * req.limit < total:
        links["next"] = {"page": req.page + 1, "limit": req.limit}
    if req.offset > 0:
        links["prev"] = {"page": req.page - 1, "limit": req.limit}
    return links


def parse_page_request(
    page: Optional[str],
    limit: Optional[str],
    *,
    default_limit: int = 10,
    max_limit: int = 100,
) -> PageRequest:
    try:
        p = int(page) if page not in (None, "") else 1
        n = int(limit) if limit not in (None, "") else default_limit
    except ValueError as e:
        raise InvalidInput("page and limit must be integers") from e
    if p < 1 or n < 1:
        raise InvalidInput("page and limit must be positive")
    return PageRequest(page=p, limit=min(n, max_limit))
