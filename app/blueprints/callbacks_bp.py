"""
Callback ingress blueprint.

Endpoints:
    POST /webhook/agents              -- agent webhook (JSON)
    GET  /webhook/agents/health       -- webhook reachability probe
    POST /api/v1/email-webhook        -- inbound email (multipart/form-data or urlencoded)
    GET  /api/v1/email-webhook        -- inbound email reachability probe

Both POST endpoints acknowledge with 200 whether the callback matched a
run or was recorded as an orphan; senders must not retry either case.
"""

import logging

from flask import Blueprint, jsonify, request

from app.services.audit_service import extract_audit_context
from app.services.correlation_service import correlate_email, correlate_webhook

logger = logging.getLogger(__name__)

callbacks_bp = Blueprint("callbacks", __name__)


def _parse_decision_requested():
    return str(request.args.get("parse_decision", "")).lower() in ("1", "true", "yes")


def _ack(result):
    body = result.to_dict()
    if result.matched:
        body["message"] = "Response correlated"
    else:
        body["message"] = "Callback received; no matching run"
    return jsonify(body), 200


# ── Agent webhook ────────────────────────────────────────────────────────────

@callbacks_bp.route("/webhook/agents", methods=["POST"])
def receive_agent_webhook():
    """Receive an agent response and merge it into its run."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form.to_dict() if request.form else {}

    try:
        result = correlate_webhook(
            payload,
            context=extract_audit_context(),
            parse_decision=_parse_decision_requested(),
        )
    except Exception:
        logger.exception("Unexpected error processing agent webhook")
        return jsonify({"error": "Failed to process webhook"}), 500
    return _ack(result)


@callbacks_bp.route("/webhook/agents/health", methods=["GET"])
def agent_webhook_health():
    return jsonify({"status": "ok", "endpoint": "/webhook/agents", "methods": ["POST"]})


# ── Inbound email ────────────────────────────────────────────────────────────

@callbacks_bp.route("/api/v1/email-webhook", methods=["POST"])
def receive_email_webhook():
    """Receive a parsed inbound email and merge it into its run."""
    fields = request.form.to_dict() if request.form else {}
    if not fields:
        fields = request.get_json(silent=True) or {}
    logger.info("Inbound email received: fields=%s", sorted(fields)[:20])

    try:
        result = correlate_email(
            fields,
            context=extract_audit_context(),
            parse_decision=_parse_decision_requested(),
        )
    except Exception:
        logger.exception("Unexpected error processing inbound email")
        return jsonify({"error": "Failed to process email"}), 500
    return _ack(result)


@callbacks_bp.route("/api/v1/email-webhook", methods=["GET"])
def email_webhook_info():
    return jsonify({
        "status": "ok",
        "endpoint": "/api/v1/email-webhook",
        "methods": ["POST"],
        "accepts": ["multipart/form-data", "application/x-www-form-urlencoded", "application/json"],
    })
