"""
Retention & cleanup.

Each retention category has a horizon in days (config ``RETENTION_DAYS``):

    audit_logs        audit entries, by their stored retention_date
    medical_records   automation runs, by created_at
    temp_files        orphan callbacks, by received_at
    sessions          user sessions, by created_at or expires_at

``run_retention_sweep`` deletes everything past its horizon in one
transaction and then writes a single ``retention.cleanup`` audit entry
whose counts are the rows actually removed. Pending runs are never
special-cased: a run that never got a callback stays pending until its
own horizon passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from sqlalchemy import text

from app.config import DEFAULT_RETENTION_DAYS
from app.models import db
from app.models.audit import AuditLog
from app.models.automation import OrphanCallback
from app.services import run_ledger
from app.services.audit_service import AuditContext, record_event, system_context
from app.services.correlation_service import purge_orphans_before
from app.services.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

RETENTION_CATEGORIES = ("audit_logs", "medical_records", "temp_files", "sessions")


@dataclass
class RetentionPolicy:
    horizons: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RETENTION_DAYS))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RetentionPolicy:
        horizons = dict(DEFAULT_RETENTION_DAYS)
        horizons.update({k: int(v) for k, v in (config.get("RETENTION_DAYS") or {}).items()})
        for category, days in horizons.items():
            if days < 0:
                raise ValueError(f"Retention horizon for {category} must be >= 0, got {days}")
        return cls(horizons=horizons)

    def horizon(self, category: str) -> timedelta:
        return timedelta(days=self.horizons[category])

    def cutoff(self, category: str, now: datetime) -> datetime:
        return now - self.horizon(category)


def run_retention_sweep(
    now: datetime | None = None,
    *,
    policy: RetentionPolicy | None = None,
    store: SessionStore | None = None,
    context: AuditContext | None = None,
) -> dict[str, Any]:
    """Delete expired records in every category and audit the result.

    Returns:
        {"deleted": {category: count}, "total": int, "cutoffs": {...}, "ran_at": iso}
    """
    from flask import current_app

    now = now or datetime.now(timezone.utc)
    policy = policy or RetentionPolicy.from_config(current_app.config)
    store = store or get_session_store()
    cutoffs = {c: policy.cutoff(c, now) for c in RETENTION_CATEGORIES}

    try:
        deleted = {
            # Audit rows carry their own expiry, fixed at write time.
            "audit_logs": AuditLog.query.filter(AuditLog.retention_date < now)
                                        .delete(synchronize_session="fetch"),
            "medical_records": run_ledger.purge_created_before(cutoffs["medical_records"]),
            "temp_files": purge_orphans_before(cutoffs["temp_files"]),
            "sessions": store.purge_expired(cutoffs["sessions"], now),
        }
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Retention sweep failed; no records removed")
        raise

    total = sum(deleted.values())
    summary = {
        "deleted": deleted,
        "total": total,
        "cutoffs": {c: v.isoformat() for c, v in cutoffs.items()},
        "ran_at": now.isoformat(),
    }
    logger.info("Retention sweep removed %d records: %s", total, deleted)
    record_event(
        "retention.cleanup",
        resource_type="system",
        details={"deleted": deleted, "total": total},
        context=context or system_context(),
    )
    return summary


def run_health_check(context: AuditContext | None = None) -> dict[str, Any]:
    """Check the database and summarise ledger backlog; audited as system.health_check."""
    checks: dict[str, Any] = {}
    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        checks["database"] = f"error: {str(exc)[:200]}"

    if checks["database"] == "ok":
        by_status = run_ledger.count_by_status()
        checks["pending_runs"] = by_status.get("pending", 0)
        checks["error_runs"] = by_status.get("error", 0)
        checks["orphan_callbacks"] = OrphanCallback.query.count()

    status = "healthy" if checks["database"] == "ok" else "degraded"
    result = {"status": status, "checks": checks}
    logger.info("Health check: %s %s", status, checks)
    record_event(
        "system.health_check",
        resource_type="system",
        details=result,
        context=context or system_context(),
    )
    return result
