"""Automation run ledger models.

Models:
    - AutomationRun: one triggered external workflow run and its correlated result
    - OrphanCallback: callback content that could not be attributed to any run
    - ChainPreset: administrator-managed named chains
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import validates

from app.models import db

try:
    from sqlalchemy import JSON
except ImportError:
    from sqlalchemy.types import JSON


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


RUN_STATUSES = {"pending", "completed", "error"}
CORRELATION_SOURCES = {"webhook", "email"}
ORPHAN_REASONS = {"no_matching_run", "missing_identifier"}


# ── Automation Run ────────────────────────────────────────────────

class AutomationRun(db.Model):
    """Ledger record for a single triggered chain run."""

    __tablename__ = "automation_runs"
    __table_args__ = (
        Index("idx_automation_runs_created", "created_at"),
        Index("idx_automation_runs_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    chain_name = Column(String(200), nullable=False)
    trigger_email = Column(String(255), nullable=False)
    request_payload = Column(JSON, default=dict)
    run_identifier = Column(String(128), unique=True, nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending")  # pending | completed | error
    raw_response = Column(Text, default="")
    http_status = Column(Integer, nullable=True)

    correlated_response = Column(Text, nullable=True)
    correlated_response_source = Column(String(20), nullable=True)  # webhook | email
    agent_name = Column(String(200), nullable=True)
    callback_payload = Column(JSON, nullable=True)
    correlation_count = Column(Integer, nullable=False, default=0)
    correlated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("run_identifier")
    def _freeze_run_identifier(self, key, value):
        """A run identifier may be assigned once and never changed afterwards."""
        current = self.run_identifier
        if current and value != current:
            raise ValueError(
                f"run_identifier is immutable (run {self.id}: {current!r} -> {value!r})"
            )
        return value or None

    @validates("status")
    def _check_status(self, key, value):
        if value not in RUN_STATUSES:
            raise ValueError(f"Invalid run status: {value!r}")
        return value

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self):
        return {
            "id": self.id,
            "chain_name": self.chain_name,
            "trigger_email": self.trigger_email,
            "request_payload": self.request_payload or {},
            "run_identifier": self.run_identifier,
            "status": self.status,
            "raw_response": self.raw_response,
            "http_status": self.http_status,
            "correlated_response": self.correlated_response,
            "correlated_response_source": self.correlated_response_source,
            "agent_name": self.agent_name,
            "correlation_count": self.correlation_count or 0,
            "correlated_at": _iso(self.correlated_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<AutomationRun {self.id} {self.chain_name} [{self.status}] rid={self.run_identifier}>"


# ── Orphan Callback ───────────────────────────────────────────────

class OrphanCallback(db.Model):
    """Callback content whose identifier matched no run in the ledger."""

    __tablename__ = "orphan_callbacks"

    id = Column(Integer, primary_key=True)
    channel = Column(String(20), nullable=False)  # webhook | email
    candidate_identifier = Column(String(128), nullable=True, index=True)
    reason = Column(String(30), nullable=False, default="no_matching_run")
    content = Column(Text, default="")
    agent_name = Column(String(200), nullable=True)
    payload = Column(JSON, default=dict)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "channel": self.channel,
            "candidate_identifier": self.candidate_identifier,
            "reason": self.reason,
            "content": self.content,
            "agent_name": self.agent_name,
            "payload": self.payload or {},
            "received_at": _iso(self.received_at),
        }


# ── Chain Preset ──────────────────────────────────────────────────

class ChainPreset(db.Model):
    """Named chain an administrator can pick when triggering a run."""

    __tablename__ = "chain_presets"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": _iso(self.created_at),
        }
