"""
Patient Enrollment Platform
HTTP blueprints.  Shared listing helper lives here so every list endpoint
reads ``?limit=`` and ``?offset=`` the same way.
"""

from flask import request

from app.utils.helpers import parse_limit


def paginate_query(query, default_limit=50, max_limit=500):
    """Return ``(items, total, limit, offset)`` for an ordered query."""
    limit = parse_limit(request.args.get("limit"), default=default_limit, maximum=max_limit)
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        offset = 0
    total = query.order_by(None).count()
    items = query.limit(limit).offset(offset).all()
    return items, total, limit, offset
