"""Tests for the callback correlator: webhook and inbound email channels.

Covers identifier/content extraction, merge into the ledger, orphan
recording, and the 200-always contract of the ingress endpoints.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from app.models import db
from app.models.audit import AuditLog
from app.models.automation import AutomationRun, OrphanCallback
from app.services import correlation_service as corr
from app.services.audit_service import system_context

DECISION_TEXT = """APPROVAL LIKELIHOOD: Medium
CRITERIA ASSESSMENT
✓ Age over 65
✗ Missing referral
DOCUMENTATION GAPS
- Referral letter
RECOMMENDATIONS
1. Request referral
"""


def _raw_email(html=None, plain=None):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Output from run (cr-mime-0001)"
    if plain is not None:
        msg.attach(MIMEText(plain, "plain", "utf-8"))
    if html is not None:
        msg.attach(MIMEText(html, "html", "utf-8"))
    return msg.as_string()


# ── Field extraction ─────────────────────────────────────────────────────────


class TestWebhookFields:
    @pytest.mark.parametrize("key", ["chainRunId", "ChainRunId", "chainrun_id", "chain_run_id", "Chain Run ID"])
    def test_identifier_aliases(self, key):
        identifier, _, _ = corr.extract_webhook_fields({key: "cr-alias-01"})
        assert identifier == "cr-alias-01"

    def test_content_alias_order(self):
        _, content, _ = corr.extract_webhook_fields({"message": "m", "summ": "s"})
        assert content == "s"

    def test_defaults(self):
        identifier, content, agent = corr.extract_webhook_fields({})
        assert identifier is None
        assert content == "Webhook received (no response content)"
        assert agent == "Agents System"


class TestEmailIdentifier:
    def test_canonical_json_in_html(self):
        fields = {"html": '<pre>{"ChainRun_ID": "cr-json-77"}</pre>', "subject": "(subject-id-1)"}
        assert corr.extract_email_identifier(fields) == "cr-json-77"

    def test_quoted_printable_artifacts_decoded(self):
        fields = {"text": '"ChainRun_=\r\nID": "cr-qp-0042"'}
        assert corr.extract_email_identifier(fields) == "cr-qp-0042"

    def test_output_from_run_pattern(self):
        assert corr.extract_email_identifier({"text": "Output from run (a1b2c3d4)"}) == "a1b2c3d4"

    def test_html_searched_before_text(self):
        fields = {"html": "Output from run (htmlid01)", "text": "Output from run (textid01)"}
        assert corr.extract_email_identifier(fields) == "htmlid01"

    def test_subject_is_last_resort(self):
        fields = {"text": "no identifier here", "subject": "Results (subj-00042)"}
        assert corr.extract_email_identifier(fields) == "subj-00042"

    def test_short_tokens_not_accepted(self):
        assert corr.extract_email_identifier({"text": "run (abc)", "subject": "(xyz)"}) is None


class TestEmailContent:
    def test_html_part_preferred(self):
        raw = _raw_email(html="<p>APPROVAL LIKELIHOOD: High</p>", plain="plain body")
        assert corr.extract_email_content({"email": raw}) == "<p>APPROVAL LIKELIHOOD: High</p>"

    def test_plain_part_when_no_html(self):
        raw = _raw_email(plain="plain body only")
        assert corr.extract_email_content({"email": raw}) == "plain body only"

    def test_falls_back_to_posted_fields(self):
        assert corr.extract_email_content({"html": "<b>posted</b>", "text": "t"}) == "<b>posted</b>"

    def test_nothing_available(self):
        assert corr.extract_email_content({}) == "No content found"


# ── Correlation ──────────────────────────────────────────────────────────────


class TestCorrelateWebhook:
    def test_match_completes_run(self, make_run):
        run = make_run(run_identifier="cr-hook-1")

        result = corr.correlate_webhook(
            {"chainRunId": "cr-hook-1", "agentResponse": DECISION_TEXT, "agentName": "Eligibility"},
            context=system_context(),
        )

        assert result.matched
        assert result.run.id == run.id
        stored = db.session.get(AutomationRun, run.id)
        assert stored.status == "completed"
        assert stored.correlated_response_source == "webhook"
        assert stored.agent_name == "Eligibility"
        assert stored.callback_payload["chainRunId"] == "cr-hook-1"
        assert AuditLog.query.filter_by(action="automation.correlate").count() == 1

    def test_duplicate_delivery_last_write_wins(self, make_run):
        make_run(run_identifier="cr-hook-2")
        corr.correlate_webhook({"chainRunId": "cr-hook-2", "agentResponse": "first"})
        result = corr.correlate_webhook({"chainRunId": "cr-hook-2", "agentResponse": "second"})

        assert result.run.correlated_response == "second"
        assert result.run.correlation_count == 2
        assert AutomationRun.query.count() == 1

    def test_unknown_identifier_becomes_orphan(self, make_run):
        make_run(run_identifier="cr-known")

        result = corr.correlate_webhook({"chainRunId": "cr-unknown", "agentResponse": "text"})

        assert not result.matched
        assert result.orphan.reason == "no_matching_run"
        assert result.orphan.candidate_identifier == "cr-unknown"
        assert AutomationRun.query.count() == 1
        assert AutomationRun.query.one().status == "pending"
        assert AuditLog.query.filter_by(action="automation.orphan_callback").count() == 1

    def test_missing_identifier_becomes_orphan(self):
        result = corr.correlate_webhook({"agentResponse": "text"})
        assert result.orphan.reason == "missing_identifier"
        assert AutomationRun.query.count() == 0

    def test_eager_decision_parse(self, make_run):
        make_run(run_identifier="cr-hook-3")
        result = corr.correlate_webhook(
            {"chainRunId": "cr-hook-3", "agentResponse": DECISION_TEXT}, parse_decision=True,
        )
        assert result.decision.approval_likelihood == "Medium"
        assert len(result.decision.criteria_items) == 2


class TestCorrelateEmail:
    def test_email_match_uses_mime_html(self, make_run):
        run = make_run(run_identifier="cr-mime-0001")
        raw = _raw_email(html="<p>APPROVAL LIKELIHOOD: High</p>", plain="plain")

        result = corr.correlate_email({"subject": "Output from run (cr-mime-0001)", "email": raw})

        assert result.matched
        stored = db.session.get(AutomationRun, run.id)
        assert stored.correlated_response_source == "email"
        assert stored.correlated_response == "<p>APPROVAL LIKELIHOOD: High</p>"

    def test_email_without_identifier_orphaned(self):
        result = corr.correlate_email({"subject": "Hello", "text": "nothing here"})
        assert not result.matched
        assert result.orphan.channel == "email"
        assert result.orphan.reason == "missing_identifier"


# ── Ingress endpoints ────────────────────────────────────────────────────────


class TestIngressEndpoints:
    def test_webhook_match_returns_200(self, client, make_run):
        make_run(run_identifier="cr-http-1")
        res = client.post("/webhook/agents", json={"chainRunId": "cr-http-1", "summ": "done"})
        assert res.status_code == 200
        assert res.get_json()["matched"] is True

    def test_webhook_orphan_still_200(self, client):
        res = client.post("/webhook/agents", json={"chainRunId": "cr-nobody", "summ": "done"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["matched"] is False
        assert body["orphan_id"] is not None
        assert OrphanCallback.query.count() == 1

    def test_webhook_parse_decision_query(self, client, make_run):
        make_run(run_identifier="cr-http-2")
        res = client.post("/webhook/agents?parse_decision=true",
                          json={"chainRunId": "cr-http-2", "agentResponse": DECISION_TEXT})
        assert res.get_json()["decision"]["approval_likelihood"] == "Medium"

    def test_email_form_post(self, client, make_run):
        make_run(run_identifier="a1b2c3d4e5")
        res = client.post("/api/v1/email-webhook", data={
            "subject": "Agent output",
            "text": "Output from run (a1b2c3d4e5)\nAPPROVAL LIKELIHOOD: Low",
        })
        assert res.status_code == 200
        assert res.get_json()["matched"] is True
        assert AutomationRun.query.one().status == "completed"

    def test_email_orphan_still_200(self, client):
        res = client.post("/api/v1/email-webhook", data={"subject": "none", "text": "none"})
        assert res.status_code == 200
        assert res.get_json()["matched"] is False

    def test_reachability_checks(self, client):
        assert client.get("/webhook/agents/health").status_code == 200
        assert client.get("/api/v1/email-webhook").get_json()["status"] == "ok"

    def test_orphan_listing(self, client):
        client.post("/webhook/agents", json={"summ": "no id"})
        items = client.get("/api/v1/orphan-callbacks").get_json()["items"]
        assert len(items) == 1
        assert items[0]["reason"] == "missing_identifier"
