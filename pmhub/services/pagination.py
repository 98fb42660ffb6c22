import math
from typing import Any, Callable, Dict, List, Tuple

from fastapi import HTTPException, Query
from sqlalchemy.orm import Query as SAQuery


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20


class PageParams:
    """Query-string dependency for ?page=&limit= with validation."""

    def __init__(self, page: int = Query(DEFAULT_PAGE), limit: int = Query(DEFAULT_LIMIT)):
        if page < 1 or limit < 1:
            raise HTTPException(status_code=400, detail="page and limit must be positive integers")
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
    }


def paginate(query: SAQuery, params: PageParams) -> Tuple[List[Any], Dict[str, int]]:
    """Run a count and a page fetch on an ORM query."""
    total = query.order_by(None).count()
    rows = query.offset(params.offset).limit(params.limit).all()
    return rows, pagination_meta(total, params.page, params.limit)


def page_response(key: str, query: SAQuery, params: PageParams, serialize: Callable[[Any], Dict]) -> Dict[str, Any]:
    rows, meta = paginate(query, params)
    return {key: [serialize(r) for r in rows], "pagination": meta}
