"""
Patient Enrollment Platform
Scheduling models.

Models:
    - ScheduledJob: one row per registered job; cadence, next fire time and
      execution history survive restarts.
"""

from datetime import datetime, timezone

from app.models import db


JOB_STATUSES = {"active", "paused"}
RUN_STATUSES = {"success", "failed"}


def _aware(value):
    """SQLite hands DateTime(timezone=True) back naive; values are stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _iso(value):
    value = _aware(value)
    return value.isoformat() if value else None


class ScheduledJob(db.Model):
    """
    A retention or maintenance job driven by the in-process scheduler.

    ``schedule_config`` holds cron-style fields (``day_of_week``, ``hour``,
    ``minute``) interpreted in the scheduler's configured time zone.
    ``next_run_at`` is always UTC.  The timer loop re-reads ``is_enabled``
    and ``next_run_at`` on every tick, so toggling a job needs no restart.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="retention_cleanup | system_health_check")
    description = db.Column(db.String(500), default="")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active", comment="active | paused")
    is_enabled = db.Column(db.Boolean, default=True)

    next_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_success_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)

    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    consecutive_failures = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def is_due(self, now: datetime) -> bool:
        next_at = _aware(self.next_run_at)
        return bool(self.is_enabled) and next_at is not None and next_at <= now

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        now = datetime.now(timezone.utc)
        self.last_run_at = now
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.consecutive_failures = (self.consecutive_failures or 0) + 1
            self.last_error = str(error) if error else None
        else:
            self.consecutive_failures = 0
            self.last_success_at = now

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "next_run_at": _iso(self.next_run_at),
            "last_run_at": _iso(self.last_run_at),
            "last_success_at": _iso(self.last_success_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
