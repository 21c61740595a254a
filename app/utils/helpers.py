"""Shared utility functions for blueprints and services.

get_or_404:          tuple-return lookup used by read endpoints
parse_limit:         bounded integer query parameter
date_range_cutoff:   named look-back windows for list endpoints
"""

from datetime import datetime, timedelta, timezone

from flask import jsonify

from app.models import db


# Named look-back windows accepted by ``?date_range=``.
DATE_RANGES = {
    "1day": timedelta(days=1),
    "3days": timedelta(days=3),
    "week": timedelta(days=7),
}


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(AuditLog, log_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def parse_limit(value, default=50, maximum=500):
    """Coerce a ``limit`` query value into ``1..maximum``; bad input → default."""
    try:
        limit = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default
    return max(1, min(limit, maximum))


def date_range_cutoff(value, now=None):
    """Translate a named date range into a UTC cut-off datetime.

    ``None``, ``""`` and ``"all"`` mean no cut-off. Unknown names fall back
    to three days, matching the dashboard default.
    """
    if not value or value == "all":
        return None
    now = now or datetime.now(timezone.utc)
    return now - DATE_RANGES.get(value, DATE_RANGES["3days"])

