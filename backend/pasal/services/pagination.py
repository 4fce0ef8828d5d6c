# Overview: Shared page/per_page handling for list endpoints.

from __future__ import annotations

from typing import Callable

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


def paginate_query(query, *, page: int | None, per_page: int | None, serialize: Callable) -> dict:
    """
    Run `query` for one page.

    Returns a dict with 'items', 'count' and a 'pagination' block. page is
    1-indexed; per_page defaults to 20 and is capped at 100.
    """
    per_page = min(per_page or DEFAULT_PER_PAGE, MAX_PER_PAGE)
    per_page = max(per_page, 1)
    page = max(page or 1, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    items = [serialize(row) for row in rows]

    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
