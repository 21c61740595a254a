"""
Run Ledger: persistence operations for AutomationRun.

The ledger is the only shared mutable state of the correlation engine.
Every write that can race (two callbacks for the same run identifier,
a callback racing the trigger insert) is expressed as a single SQL
statement so the database serialises it; nothing here reads a row and
then writes it back.

Usage:
    from app.services import run_ledger
    run = run_ledger.merge_correlation(rid, content, "webhook", agent_name="Agents System")
    if run is None:
        ...  # orphan
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, NotFoundError
from app.models import db
from app.models.automation import CORRELATION_SOURCES, AutomationRun
from app.utils.helpers import parse_limit

logger = logging.getLogger(__name__)

LIST_DEFAULT_LIMIT = 50
LIST_MAX_LIMIT = 500


def insert(run: AutomationRun) -> AutomationRun:
    """Persist a new run and commit; the primary key is assigned here.

    Raises:
        ConflictError: the run identifier is already owned by another run.
    """
    db.session.add(run)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Run identifier already recorded: %s (%s)", run.run_identifier, exc.orig,
            extra={"run_identifier": run.run_identifier},
        )
        raise ConflictError("AutomationRun", "run_identifier", run.run_identifier) from exc
    logger.info(
        "Run %s recorded chain=%s status=%s", run.id, run.chain_name, run.status,
        extra={"run_id": run.id, "run_identifier": run.run_identifier},
    )
    return run


def get(run_id: int) -> AutomationRun:
    run = db.session.get(AutomationRun, run_id)
    if run is None:
        raise NotFoundError(resource="AutomationRun", resource_id=run_id)
    return run


def find_by_identifier(run_identifier: str | None) -> AutomationRun | None:
    """Exact-match lookup; blank identifiers never match anything."""
    if not run_identifier or not str(run_identifier).strip():
        return None
    return AutomationRun.query.filter_by(run_identifier=str(run_identifier).strip()).first()


def list_recent(limit: Any = LIST_DEFAULT_LIMIT, since: datetime | None = None) -> list[AutomationRun]:
    """Most recent runs first, at most ``limit`` (clamped to 1..500)."""
    limit = parse_limit(limit, default=LIST_DEFAULT_LIMIT, maximum=LIST_MAX_LIMIT)
    q = AutomationRun.query
    if since is not None:
        q = q.filter(AutomationRun.created_at >= since)
    return (
        q.order_by(AutomationRun.created_at.desc(), AutomationRun.id.desc())
        .limit(limit)
        .all()
    )


def count_by_status() -> dict[str, int]:
    rows = (
        db.session.query(AutomationRun.status, db.func.count(AutomationRun.id))
        .group_by(AutomationRun.status)
        .all()
    )
    return {status: count for status, count in rows}


def clear_all() -> int:
    """Administrative reset: delete every run and return how many were removed."""
    deleted = AutomationRun.query.delete(synchronize_session="fetch")
    db.session.commit()
    logger.warning("Run ledger cleared: %d runs deleted", deleted)
    return deleted


def merge_correlation(
    run_identifier: str,
    content: str,
    source: str,
    agent_name: str | None = None,
    payload: dict | None = None,
) -> AutomationRun | None:
    """Attach callback content to the run owning ``run_identifier``.

    One conditional UPDATE sets the content, marks the run completed and
    bumps ``correlation_count``. Concurrent merges for the same identifier
    are serialised by the database; the last one wins.

    Returns the updated run, or None when no run owns the identifier.
    """
    if source not in CORRELATION_SOURCES:
        raise ValueError(f"Unknown correlation source: {source!r}")
    if not run_identifier:
        return None

    values = {
        AutomationRun.correlated_response: content,
        AutomationRun.correlated_response_source: source,
        AutomationRun.status: "completed",
        AutomationRun.correlation_count: AutomationRun.correlation_count + 1,
        AutomationRun.correlated_at: datetime.now(timezone.utc),
    }
    if agent_name:
        values[AutomationRun.agent_name] = agent_name
    if payload is not None:
        values[AutomationRun.callback_payload] = payload

    matched = (
        AutomationRun.query
        .filter(AutomationRun.run_identifier == run_identifier)
        .update(values, synchronize_session="fetch")
    )
    if not matched:
        return None
    db.session.commit()

    run = (
        AutomationRun.query
        .filter(AutomationRun.run_identifier == run_identifier)
        .populate_existing()
        .first()
    )
    logger.info(
        "Run %s correlated via %s (count=%s)", run.id, source, run.correlation_count,
        extra={"run_id": run.id, "run_identifier": run_identifier, "channel": source},
    )
    return run


def purge_created_before(cutoff: datetime) -> int:
    """Bulk delete runs created before ``cutoff``; the caller commits."""
    return (
        AutomationRun.query
        .filter(AutomationRun.created_at < cutoff)
        .delete(synchronize_session="fetch")
    )
