"""Tests for the audit trail: writer, retention marker, failure isolation, API."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.models import db
from app.models.audit import AuditLog, write_audit
from app.services import audit_service
from app.services.audit_service import record_event, system_context


def _as_utc(value):
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class TestWriteAudit:
    def test_retention_date_uses_category_horizon(self, app):
        entry = write_audit(action="automation.trigger", retention_category="temp_files")
        db.session.commit()

        delta = _as_utc(entry.retention_date) - _as_utc(entry.timestamp)
        assert delta == timedelta(days=app.config["RETENTION_DAYS"]["temp_files"])

    def test_default_category_is_audit_logs(self, app):
        entry = write_audit(action="automation.trigger")
        db.session.commit()
        delta = _as_utc(entry.retention_date) - _as_utc(entry.timestamp)
        assert delta == timedelta(days=app.config["RETENTION_DAYS"]["audit_logs"])

    def test_details_round_trip(self):
        entry = write_audit(action="automation.correlate", details={"channel": "email"})
        db.session.commit()
        assert db.session.get(AuditLog, entry.id).details == {"channel": "email"}


class TestRecordEvent:
    def test_context_copied_to_entry(self):
        entry = record_event("system.health_check", resource_type="system", context=system_context())
        assert entry.actor == "system"
        assert entry.ip_address == "system"

    def test_failure_is_swallowed(self):
        with patch.object(audit_service, "write_audit", side_effect=RuntimeError("db down")):
            assert record_event("automation.trigger", context=system_context()) is None
        assert AuditLog.query.count() == 0


class TestAuditAPI:
    def test_list_filter_and_get(self, client):
        record_event("automation.trigger", resource_type="automation_run", resource_id=1,
                     context=system_context())
        record_event("chain_preset.create", resource_type="chain_preset", resource_id=2,
                     context=system_context())

        body = client.get("/api/v1/audit?action=automation").get_json()
        assert body["total"] == 1
        entry_id = body["audit_logs"][0]["id"]

        single = client.get(f"/api/v1/audit/{entry_id}").get_json()
        assert single["resource_type"] == "automation_run"
        assert client.get("/api/v1/audit/99999").status_code == 404

    def test_request_context_reaches_audit(self, client, fake_http):
        client.post(
            "/api/v1/automation-runs/trigger",
            json={"chain_name": "eligibility_check"},
            headers={"X-Forwarded-For": "203.0.113.7", "X-User": "coordinator@clinic.test"},
        )
        entry = AuditLog.query.filter(AuditLog.action.startswith("automation.trigger")).one()
        assert entry.ip_address == "203.0.113.7"
        assert entry.actor == "coordinator@clinic.test"
        assert _as_utc(entry.retention_date) > datetime.now(timezone.utc) + timedelta(days=365)
