"""
Patient Enrollment Platform
Audit domain model.

Models:
    - AuditLog: append-only audit trail with a retention marker per row.
"""

import json
from datetime import UTC, datetime, timedelta

from app.config import DEFAULT_RETENTION_DAYS
from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_RESOURCE_TYPES = {
    "automation_run", "orphan_callback", "chain_preset",
    "user_session", "system",
}

AUDIT_ACTIONS = {
    # Automation lifecycle
    "automation.trigger",
    "automation.trigger_failed",
    "automation.correlate",
    "automation.orphan_callback",
    "automation.clear_all",
    # Chain presets
    "chain_preset.create",
    "chain_preset.delete",
    # Scheduler
    "retention.cleanup",
    "system.health_check",
}

DEFAULT_RETENTION_CATEGORY = "audit_logs"


def _horizon_days(category: str) -> int:
    """Resolve the retention horizon for *category* from app config when available."""
    try:
        from flask import current_app, has_app_context
        if has_app_context():
            days = current_app.config.get("RETENTION_DAYS") or {}
            if category in days:
                return int(days[category])
    except RuntimeError:
        pass
    return DEFAULT_RETENTION_DAYS.get(category, DEFAULT_RETENTION_DAYS[DEFAULT_RETENTION_CATEGORY])


class AuditLog(db.Model):
    """
    Immutable audit trail for every automation lifecycle event.

    One row per action.  ``retention_date`` is fixed at write time
    (timestamp + category horizon) and is the only column the retention
    sweep looks at.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_resource", "resource_type", "resource_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
        db.Index("idx_audit_retention", "retention_date"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="automation.trigger | automation.correlate | retention.cleanup | …",
    )
    resource_type = db.Column(db.String(30), nullable=True)
    resource_id = db.Column(
        db.String(64), nullable=True,
        comment="PK or run identifier of the referenced entity",
    )

    # Who / where
    actor = db.Column(db.String(150), nullable=False, default="system")
    user_id = db.Column(db.Integer, nullable=True)
    organization_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)

    details_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    retention_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor": self.actor,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "retention_date": self.retention_date.isoformat() if self.retention_date else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.resource_type}/{self.resource_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    action: str,
    resource_type: str | None = None,
    resource_id: str | int | None = None,
    details: dict | None = None,
    actor: str = "system",
    user_id: int | None = None,
    organization_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    session_id: str | None = None,
    retention_category: str = DEFAULT_RETENTION_CATEGORY,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    now = datetime.now(UTC)
    log = AuditLog(
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        actor=actor or "system",
        user_id=user_id,
        organization_id=organization_id,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        session_id=session_id,
        details_json=json.dumps(details or {}, default=str),
        timestamp=now,
        retention_date=now + timedelta(days=_horizon_days(retention_category)),
    )
    db.session.add(log)
    db.session.flush()
    return log
