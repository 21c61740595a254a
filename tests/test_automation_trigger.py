"""Tests for chain triggering: service layer and POST /api/v1/automation-runs/trigger.

Test strategy
-------------
All outbound HTTP goes through the module-level `chain_gateway` singleton,
which the `fake_http` fixture replaces with a gateway wrapping a scripted
session. No network access is needed.
"""

import json
from unittest.mock import patch

import pytest
import requests

import app.integrations.chain_gateway as gw_module
from app.core.exceptions import ValidationError
from app.integrations.chain_gateway import GatewayResult
from app.models.audit import AuditLog
from app.models.automation import AutomationRun
from app.services import automation_service


class TestRequestBody:
    def test_body_fields_and_blank_optionals_omitted(self, fake_http):
        fake_http.reply(200, json.dumps({"ChainRun_ID": "cr-body-0001"}))

        automation_service.trigger_chain(
            "eligibility_check",
            trigger_email="nurse@clinic.test",
            starting_variables={" Patient_ID ": " 12345 ", "empty": "  ", "": "x"},
            source_id="src-9",
            folder_id="   ",
        )

        assert len(fake_http.calls) == 1
        body = fake_http.calls[0]["json"]
        assert body["run_email"] == "nurse@clinic.test"
        assert body["chain_to_run"] == "eligibility_check"
        assert body["human_readable_record"] == "external app"
        assert body["source_id"] == "src-9"
        assert "folder_id" not in body
        assert "first_step_user_input" not in body
        assert body["starting_variables"] == {"Patient_ID": "12345"}

    def test_configured_timeout_and_url_are_used(self, app, fake_http):
        automation_service.trigger_chain("eligibility_check")
        call = fake_http.calls[0]
        assert call["url"] == app.config["AUTOMATION_TRIGGER_URL"]
        assert call["timeout"] == app.config["AUTOMATION_TRIGGER_TIMEOUT"]

    def test_default_trigger_email(self, app, fake_http):
        outcome = automation_service.trigger_chain("eligibility_check")
        assert outcome.run.trigger_email == app.config["AUTOMATION_RUN_EMAIL"]

    def test_missing_chain_name_raises_without_calling_upstream(self, fake_http):
        with pytest.raises(ValidationError):
            automation_service.trigger_chain("   ")
        assert fake_http.calls == []

    def test_non_string_variables_rejected(self, fake_http):
        with pytest.raises(ValidationError):
            automation_service.trigger_chain("eligibility_check", starting_variables={"age": 70})
        with pytest.raises(ValidationError):
            automation_service.trigger_chain("eligibility_check", starting_variables=["a", "b"])


class TestTriggerOutcomes:
    def test_success_with_identifier_records_pending_run(self, fake_http):
        """
        Given: the workflow system answers 200 with a nested row id
        When:  a chain is triggered
        Then:  a pending run holding that identifier is in the ledger
        """
        fake_http.reply(200, json.dumps({"responses": [{"rows": [{"Run_ID": "R-77"}]}]}))

        outcome = automation_service.trigger_chain("eligibility_check")

        assert outcome.ok
        assert outcome.run_identifier == "R-77"
        run = AutomationRun.query.one()
        assert run.status == "pending"
        assert run.run_identifier == "R-77"
        assert run.http_status == 200
        assert run.correlated_response is None

    def test_success_without_identifier_still_pending(self, fake_http):
        fake_http.reply(200, json.dumps({"accepted": True}))

        outcome = automation_service.trigger_chain("eligibility_check")

        assert outcome.ok
        assert outcome.run_identifier is None
        assert outcome.run.status == "pending"
        assert outcome.run.run_identifier is None

    def test_json_reply_without_id_fields_repeats_cleanly(self, fake_http):
        """
        Given: the workflow system acknowledges with JSON carrying no id field
        When:  the same chain is triggered twice
        Then:  both runs are pending without an identifier
        """
        fake_http.reply(200, json.dumps({"status": "queued", "human_readable_record": "external app"}))

        first = automation_service.trigger_chain("eligibility_check")
        second = automation_service.trigger_chain("eligibility_check")

        assert first.ok and second.ok
        assert first.run_identifier is None
        assert second.run_identifier is None
        assert [r.status for r in AutomationRun.query.all()] == ["pending", "pending"]

    def test_non_2xx_records_error_and_skips_extraction(self, fake_http):
        fake_http.reply(500, json.dumps({"ChainRun_ID": "should-not-be-used"}))

        outcome = automation_service.trigger_chain("eligibility_check")

        assert not outcome.ok
        assert outcome.run.status == "error"
        assert outcome.run.run_identifier is None
        assert "should-not-be-used" in outcome.run.raw_response
        assert outcome.run.http_status == 500

    def test_timeout_records_error_with_diagnostic(self, fake_http, timeout_error):
        fake_http.fail(timeout_error)

        outcome = automation_service.trigger_chain("eligibility_check")

        assert outcome.run.status == "error"
        assert outcome.run.raw_response.startswith("Error: Request timed out")
        assert outcome.run.http_status is None
        assert AutomationRun.query.count() == 1

    def test_network_failure_records_error(self, fake_http):
        fake_http.fail(requests.ConnectionError("connection refused"))

        outcome = automation_service.trigger_chain("eligibility_check")

        assert outcome.run.status == "error"
        assert "connection refused" in outcome.run.raw_response

    def test_malformed_json_falls_back_to_pattern(self, fake_http):
        fake_http.reply(200, 'not json but "ChainRun_ID": "cr-pattern-555" here')

        outcome = automation_service.trigger_chain("eligibility_check")

        assert outcome.run_identifier == "cr-pattern-555"

    def test_duplicate_identifier_stored_as_error_without_identifier(self, fake_http, make_run):
        make_run(run_identifier="cr-dup-0001")
        fake_http.reply(200, json.dumps({"ChainRun_ID": "cr-dup-0001"}))

        outcome = automation_service.trigger_chain("eligibility_check")

        assert not outcome.ok
        assert outcome.run.status == "error"
        assert outcome.run.run_identifier is None
        assert AutomationRun.query.filter_by(run_identifier="cr-dup-0001").count() == 1
        assert AutomationRun.query.count() == 2

    def test_gateway_mock_via_patch_object(self):
        result = GatewayResult(
            ok=True, status_code=201, text='{"id": "generic-run-01"}',
            data={"id": "generic-run-01"}, error=None, duration_ms=12,
        )
        with patch.object(gw_module.chain_gateway, "start_run", return_value=result) as mock_start:
            outcome = automation_service.trigger_chain("eligibility_check")

        mock_start.assert_called_once()
        assert outcome.run_identifier == "generic-run-01"

    def test_trigger_is_audited(self, fake_http):
        fake_http.reply(200, json.dumps({"ChainRun_ID": "cr-audit-01"}))
        outcome = automation_service.trigger_chain("eligibility_check")

        entry = AuditLog.query.filter_by(action="automation.trigger").one()
        assert entry.resource_id == str(outcome.run.id)
        assert entry.details["run_identifier"] == "cr-audit-01"

    def test_failed_trigger_is_audited(self, fake_http):
        fake_http.reply(503, "unavailable")
        automation_service.trigger_chain("eligibility_check")
        assert AuditLog.query.filter_by(action="automation.trigger_failed").count() == 1


class TestTriggerEndpoint:
    def test_created_on_success(self, client, fake_http):
        fake_http.reply(200, json.dumps({"ChainRun_ID": "cr-api-0001"}))

        res = client.post("/api/v1/automation-runs/trigger", json={
            "chain_name": "eligibility_check",
            "starting_variables": {"Patient_ID": "42"},
        })

        assert res.status_code == 201
        body = res.get_json()
        assert body["run_identifier"] == "cr-api-0001"
        assert body["run"]["status"] == "pending"

    def test_bad_gateway_carries_errored_run(self, client, fake_http):
        fake_http.reply(500, "boom")

        res = client.post("/api/v1/automation-runs/trigger", json={"chain_name": "eligibility_check"})

        assert res.status_code == 502
        body = res.get_json()
        assert body["code"] == "ERR_UPSTREAM"
        assert body["details"]["run"]["status"] == "error"

    def test_missing_chain_name(self, client, fake_http):
        res = client.post("/api/v1/automation-runs/trigger", json={})
        assert res.status_code == 400
        assert fake_http.calls == []

    def test_invalid_variables_unprocessable(self, client, fake_http):
        res = client.post("/api/v1/automation-runs/trigger", json={
            "chain_name": "eligibility_check",
            "starting_variables": {"age": 70},
        })
        assert res.status_code == 422

    def test_non_json_body_rejected(self, client):
        res = client.post("/api/v1/automation-runs/trigger", data="chain_name=x",
                          content_type="text/plain")
        assert res.status_code == 415
