"""Tests for app.services.retention_service: horizon-based cleanup and health check."""

from datetime import datetime, timedelta, timezone

import pytest

from app.models import db
from app.models.audit import AuditLog, write_audit
from app.models.auth import UserSession
from app.models.automation import AutomationRun, OrphanCallback
from app.services.retention_service import RetentionPolicy, run_health_check, run_retention_sweep

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _audit(retention_date):
    entry = write_audit(action="automation.trigger", resource_type="automation_run", resource_id=1)
    entry.retention_date = retention_date
    db.session.commit()
    return entry


def _session(token, created_at, expires_at):
    s = UserSession(token=token, user_email="nurse@clinic.test",
                    created_at=created_at, expires_at=expires_at)
    db.session.add(s)
    db.session.commit()
    return s


class TestRetentionPolicy:
    def test_defaults(self):
        policy = RetentionPolicy.from_config({})
        assert policy.horizons["audit_logs"] == 2555
        assert policy.horizons["medical_records"] == 2555
        assert policy.horizons["temp_files"] == 30
        assert policy.horizons["sessions"] == 1

    def test_config_override(self):
        policy = RetentionPolicy.from_config({"RETENTION_DAYS": {"temp_files": "7"}})
        assert policy.horizons["temp_files"] == 7
        assert policy.cutoff("temp_files", NOW) == NOW - timedelta(days=7)

    def test_negative_horizon_rejected(self):
        with pytest.raises(ValueError):
            RetentionPolicy.from_config({"RETENTION_DAYS": {"sessions": -1}})


class TestRetentionSweep:
    def test_audit_entries_past_marker_removed(self):
        past = _audit(NOW - timedelta(days=1))
        future = _audit(NOW + timedelta(days=1))
        past_id, future_id = past.id, future.id

        summary = run_retention_sweep(now=NOW)

        assert summary["deleted"]["audit_logs"] == 1
        assert db.session.get(AuditLog, past_id) is None
        assert db.session.get(AuditLog, future_id) is not None

    def test_runs_past_horizon_removed_even_if_pending(self, make_run):
        make_run(chain_name="ancient", created_at=NOW - timedelta(days=2556))
        make_run(chain_name="recent", created_at=NOW - timedelta(days=10))

        summary = run_retention_sweep(now=NOW)

        assert summary["deleted"]["medical_records"] == 1
        assert [r.chain_name for r in AutomationRun.query.all()] == ["recent"]

    def test_pending_run_kept_within_horizon(self, make_run):
        make_run(chain_name="waiting", status="pending", created_at=NOW - timedelta(days=400))
        run_retention_sweep(now=NOW)
        assert AutomationRun.query.one().status == "pending"

    def test_orphans_and_sessions(self):
        db.session.add_all([
            OrphanCallback(channel="webhook", reason="no_matching_run",
                           received_at=NOW - timedelta(days=31)),
            OrphanCallback(channel="email", reason="missing_identifier",
                           received_at=NOW - timedelta(days=2)),
        ])
        db.session.commit()
        _session("old-token", NOW - timedelta(days=2), NOW + timedelta(hours=1))
        _session("expired-token", NOW - timedelta(hours=3), NOW - timedelta(hours=1))
        _session("live-token", NOW - timedelta(hours=2), NOW + timedelta(hours=20))

        summary = run_retention_sweep(now=NOW)

        assert summary["deleted"]["temp_files"] == 1
        assert summary["deleted"]["sessions"] == 2
        assert OrphanCallback.query.one().channel == "email"
        assert UserSession.query.one().token == "live-token"

    def test_total_matches_rows_removed_and_is_audited(self, make_run):
        _audit(NOW - timedelta(days=1))
        make_run(created_at=NOW - timedelta(days=3000))
        db.session.add(OrphanCallback(channel="webhook", reason="no_matching_run",
                                      received_at=NOW - timedelta(days=90)))
        db.session.commit()

        summary = run_retention_sweep(now=NOW)

        assert summary["total"] == 3
        assert summary["total"] == sum(summary["deleted"].values())
        entry = AuditLog.query.filter_by(action="retention.cleanup").one()
        assert entry.details["total"] == 3
        assert entry.ip_address == "system"
        assert entry.user_agent == "scheduled-task"
        assert entry.session_id == "system"

    def test_nothing_to_do(self):
        summary = run_retention_sweep(now=NOW)
        assert summary["total"] == 0
        assert AuditLog.query.filter_by(action="retention.cleanup").count() == 1


class TestHealthCheck:
    def test_reports_backlog_and_audits(self, make_run):
        make_run(status="pending")
        make_run(status="error")
        db.session.add(OrphanCallback(channel="webhook", reason="missing_identifier"))
        db.session.commit()

        result = run_health_check()

        assert result["status"] == "healthy"
        assert result["checks"] == {
            "database": "ok", "pending_runs": 1, "error_runs": 1, "orphan_callbacks": 1,
        }
        assert AuditLog.query.filter_by(action="system.health_check").count() == 1
