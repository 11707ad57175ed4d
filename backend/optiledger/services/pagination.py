# Overview: Shared page/per_page slicing for list endpoints.

from __future__ import annotations


def paginate(query, *, page: int | None, per_page: int | None, default_per_page: int = 50, max_per_page: int = 200) -> dict:
    """
    Slice an ordered query into one page of serialized rows.

    If page is None, every row is returned without a pagination block.
    """
    if page is None:
        rows = query.all()
        return {
            "items": [r.to_dict() for r in rows],
            "count": len(rows),
        }

    per_page = min(per_page or default_per_page, max_per_page)
    page = max(page, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
