"""
Callback Correlator.

Matches out-of-band callbacks (agent webhook, inbound email) back to the
run that produced them and merges their content into the ledger.

    result = correlate_webhook(request.get_json(silent=True) or {})
    result.matched   # False → result.orphan holds the recorded event

A callback whose identifier matches no run is kept as an OrphanCallback;
it never creates a run and never raises, so ingress endpoints can always
acknowledge the sender.
"""

from __future__ import annotations

import email
import logging
import re
from dataclasses import dataclass
from email import policy
from typing import Any, Mapping

from app.models import db
from app.models.automation import AutomationRun, OrphanCallback
from app.services import run_ledger
from app.services.audit_service import AuditContext, record_event
from app.services.decision_parser import DecisionRecord, parse_decision_text

logger = logging.getLogger(__name__)

WEBHOOK_CHANNEL = "webhook"
EMAIL_CHANNEL = "email"

WEBHOOK_NO_CONTENT = "Webhook received (no response content)"
EMAIL_NO_CONTENT = "No content found"
DEFAULT_AGENT_NAME = "Agents System"

IDENTIFIER_ALIASES = ("chainRunId", "ChainRunId", "chainrun_id", "chain_run_id", "Chain Run ID")
CONTENT_ALIASES = ("agentResponse", "summ", "response", "content", "message")
AGENT_ALIASES = ("agentName", "agent_name", "name")

_TOKEN = r"[A-Za-z0-9\-_]"
EMAIL_BODY_PATTERNS = (
    re.compile(rf'"ChainRun_ID"\s*:\s*"({_TOKEN}+)"', re.IGNORECASE),
    re.compile(rf"Output\s+from\s+run\s*\(({_TOKEN}{{6,}})\)", re.IGNORECASE),
    re.compile(rf'ChainRun_ID[^"]*"({_TOKEN}{{6,}})"', re.IGNORECASE),
    re.compile(rf"run\s*\(({_TOKEN}{{6,}})\)", re.IGNORECASE),
)
EMAIL_SUBJECT_PATTERN = re.compile(rf"\(({_TOKEN}{{6,}})\)")

_QP_SOFT_BREAK = re.compile(r"=\r?\n")


@dataclass
class CorrelationResult:
    matched: bool
    channel: str
    identifier: str | None = None
    run: AutomationRun | None = None
    orphan: OrphanCallback | None = None
    decision: DecisionRecord | None = None

    def to_dict(self) -> dict:
        data = {
            "matched": self.matched,
            "channel": self.channel,
            "identifier": self.identifier,
            "run_id": self.run.id if self.run else None,
            "orphan_id": self.orphan.id if self.orphan else None,
        }
        if self.decision is not None:
            data["decision"] = self.decision.to_dict()
        return data


# ── Field extraction ─────────────────────────────────────────────────────────

def _first_present(payload: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return value
    return None


def extract_webhook_fields(payload: Mapping[str, Any]) -> tuple[str | None, str, str]:
    """Return (identifier, content, agent_name) from an agent webhook payload."""
    identifier = _first_present(payload, IDENTIFIER_ALIASES)
    content = _first_present(payload, CONTENT_ALIASES)
    agent = _first_present(payload, AGENT_ALIASES)
    return (
        str(identifier).strip() if identifier is not None else None,
        str(content) if content is not None else WEBHOOK_NO_CONTENT,
        str(agent).strip() if agent is not None else DEFAULT_AGENT_NAME,
    )


def decode_soft_breaks(text: str) -> str:
    """Undo the quoted-printable artefacts that break identifier patterns."""
    return _QP_SOFT_BREAK.sub("", text).replace("=3D", "=")


def extract_email_identifier(fields: Mapping[str, Any]) -> str | None:
    """Search html, then text, then the raw message, then the subject."""
    body = fields.get("html") or fields.get("text") or fields.get("email") or ""
    decoded = decode_soft_breaks(str(body))
    for pattern in EMAIL_BODY_PATTERNS:
        match = pattern.search(decoded)
        if match:
            return match.group(1)
    match = EMAIL_SUBJECT_PATTERN.search(str(fields.get("subject") or ""))
    return match.group(1) if match else None


def _mime_part_text(raw_email: str, content_type: str) -> str | None:
    message = email.message_from_string(raw_email, policy=policy.default)
    # Headerless text parses as an implicit text/plain message; that is not a MIME part.
    if not message.is_multipart() and message.get("Content-Type") is None:
        return None
    for part in message.walk():
        if part.get_content_type() != content_type or part.is_multipart():
            continue
        try:
            content = part.get_content()
        except (LookupError, ValueError):
            logger.debug("Undecodable %s part in inbound email", content_type)
            continue
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        if content and content.strip():
            return content.strip()
    return None


def extract_email_content(fields: Mapping[str, Any]) -> str:
    """Decoded HTML part of the raw message, else its plain-text part, else the posted fields."""
    raw_email = str(fields.get("email") or "")
    if raw_email.strip():
        for content_type in ("text/html", "text/plain"):
            content = _mime_part_text(raw_email, content_type)
            if content:
                return content
    for key in ("html", "text", "email"):
        value = fields.get(key)
        if value and str(value).strip():
            return str(value)
    return EMAIL_NO_CONTENT


# ── Correlation ──────────────────────────────────────────────────────────────

def _record_orphan(
    channel: str,
    identifier: str | None,
    content: str,
    agent_name: str | None,
    payload: Mapping[str, Any],
    context: AuditContext | None,
) -> OrphanCallback:
    reason = "no_matching_run" if identifier else "missing_identifier"
    orphan = OrphanCallback(
        channel=channel,
        candidate_identifier=identifier,
        reason=reason,
        content=content,
        agent_name=agent_name,
        payload=dict(payload),
    )
    db.session.add(orphan)
    db.session.commit()
    logger.warning(
        "Orphan %s callback (%s) identifier=%s", channel, reason, identifier,
        extra={"run_identifier": identifier, "channel": channel},
    )
    record_event(
        "automation.orphan_callback",
        resource_type="orphan_callback",
        resource_id=orphan.id,
        details={"channel": channel, "reason": reason, "candidate_identifier": identifier},
        context=context,
    )
    return orphan


def _correlate(
    channel: str,
    identifier: str | None,
    content: str,
    agent_name: str | None,
    payload: Mapping[str, Any],
    *,
    context: AuditContext | None,
    parse_decision: bool,
) -> CorrelationResult:
    run = None
    if identifier:
        run = run_ledger.merge_correlation(
            identifier, content, channel,
            agent_name=agent_name,
            payload=dict(payload) if channel == WEBHOOK_CHANNEL else None,
        )
    if run is None:
        orphan = _record_orphan(channel, identifier, content, agent_name, payload, context)
        return CorrelationResult(matched=False, channel=channel, identifier=identifier, orphan=orphan)

    record_event(
        "automation.correlate",
        resource_type="automation_run",
        resource_id=run.id,
        details={
            "channel": channel,
            "run_identifier": identifier,
            "agent_name": agent_name,
            "correlation_count": run.correlation_count,
            "content_length": len(content or ""),
        },
        context=context,
    )
    result = CorrelationResult(matched=True, channel=channel, identifier=identifier, run=run)
    if parse_decision:
        result.decision = parse_decision_text(run.correlated_response)
    return result


def correlate_webhook(
    payload: Mapping[str, Any],
    *,
    context: AuditContext | None = None,
    parse_decision: bool = False,
) -> CorrelationResult:
    """Merge an agent webhook into its run, or record it as an orphan."""
    payload = payload if isinstance(payload, Mapping) else {}
    identifier, content, agent_name = extract_webhook_fields(payload)
    return _correlate(
        WEBHOOK_CHANNEL, identifier, content, agent_name, payload,
        context=context, parse_decision=parse_decision,
    )


def correlate_email(
    fields: Mapping[str, Any],
    *,
    context: AuditContext | None = None,
    parse_decision: bool = False,
) -> CorrelationResult:
    """Merge an inbound email into its run, or record it as an orphan."""
    fields = fields if isinstance(fields, Mapping) else {}
    identifier = extract_email_identifier(fields)
    content = extract_email_content(fields)
    # Keep the stored payload small: the raw message is already reflected in content.
    snapshot = {k: fields.get(k) for k in ("subject", "from", "to") if fields.get(k)}
    return _correlate(
        EMAIL_CHANNEL, identifier, content, None, snapshot,
        context=context, parse_decision=parse_decision,
    )


def purge_orphans_before(cutoff) -> int:
    """Bulk delete orphan events received before *cutoff*; the caller commits."""
    return (
        OrphanCallback.query
        .filter(OrphanCallback.received_at < cutoff)
        .delete(synchronize_session="fetch")
    )
