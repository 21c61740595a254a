"""
Automation runs blueprint.

Blueprint: automation_bp
Prefix: /api/v1

Endpoints:
    POST   /automation-runs/trigger                 -- start a chain run (201 / 502 / 422)
    GET    /automation-runs                         -- most recent runs (?limit, ?date_range, ?include_decision)
    DELETE /automation-runs                         -- administrative clear-all
    GET    /automation-runs/<id>                    -- single run
    GET    /automation-runs/by-identifier/<rid>     -- lookup by run identifier
    GET    /automation-runs/<id>/decision           -- decision record over correlated content
    GET    /orphan-callbacks                        -- callbacks that matched no run
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import paginate_query
from app.core.exceptions import NotFoundError, ValidationError
from app.models.automation import OrphanCallback
from app.services import automation_service, run_ledger
from app.services.audit_service import extract_audit_context
from app.services.decision_parser import parse_decision_text
from app.utils.errors import E, api_error, error_response
from app.utils.helpers import date_range_cutoff

logger = logging.getLogger(__name__)

automation_bp = Blueprint("automation", __name__, url_prefix="/api/v1")


def _truthy(value):
    return str(value or "").lower() in ("1", "true", "yes")


def _run_with_decision(run):
    data = run.to_dict()
    data["decision"] = parse_decision_text(run.correlated_response).to_dict()
    return data


# ── Trigger ──────────────────────────────────────────────────────────────────

@automation_bp.route("/automation-runs/trigger", methods=["POST"])
def trigger_run():
    """Start a chain run and record it in the ledger."""
    data = request.get_json(silent=True) or {}
    chain_name = data.get("chain_name")
    if not isinstance(chain_name, str) or not chain_name.strip():
        return api_error(E.VALIDATION_REQUIRED, "chain_name is required")

    try:
        outcome = automation_service.trigger_chain(
            chain_name,
            trigger_email=data.get("trigger_email"),
            starting_variables=data.get("starting_variables"),
            source_id=data.get("source_id"),
            folder_id=data.get("folder_id"),
            first_step_input=data.get("first_step_input"),
            context=extract_audit_context(),
        )
    except ValidationError as exc:
        return error_response(exc)
    except Exception:
        logger.exception("Unexpected error triggering chain %s", chain_name)
        return api_error(E.INTERNAL, "Internal server error")

    if not outcome.ok:
        return api_error(E.UPSTREAM, "Chain trigger failed", details=outcome.to_dict())
    return jsonify(outcome.to_dict()), 201


# ── Read ─────────────────────────────────────────────────────────────────────

@automation_bp.route("/automation-runs", methods=["GET"])
def list_runs():
    """Most recent runs first, bounded by ?limit (1..500, default 50)."""
    since = date_range_cutoff(request.args.get("date_range", "all"))
    runs = run_ledger.list_recent(request.args.get("limit"), since=since)
    include_decision = _truthy(request.args.get("include_decision"))
    items = [_run_with_decision(r) if include_decision else r.to_dict() for r in runs]
    return jsonify({"items": items, "total": len(items)})


@automation_bp.route("/automation-runs/<int:run_id>", methods=["GET"])
def get_run(run_id):
    try:
        run = run_ledger.get(run_id)
    except NotFoundError as exc:
        return error_response(exc)
    return jsonify(run.to_dict())


@automation_bp.route("/automation-runs/by-identifier/<path:run_identifier>", methods=["GET"])
def get_run_by_identifier(run_identifier):
    run = run_ledger.find_by_identifier(run_identifier)
    if run is None:
        return api_error(E.NOT_FOUND, "Automation run not found")
    return jsonify(run.to_dict())


@automation_bp.route("/automation-runs/<int:run_id>/decision", methods=["GET"])
def get_run_decision(run_id):
    """Structured decision record parsed from the run's correlated content."""
    try:
        run = run_ledger.get(run_id)
    except NotFoundError as exc:
        return error_response(exc)
    decision = parse_decision_text(run.correlated_response)
    return jsonify({"run_id": run.id, "status": run.status, "decision": decision.to_dict()})


# ── Admin ────────────────────────────────────────────────────────────────────

@automation_bp.route("/automation-runs", methods=["DELETE"])
def clear_runs():
    """Delete every run from the ledger."""
    try:
        deleted = automation_service.clear_all_runs(context=extract_audit_context())
    except Exception:
        logger.exception("Unexpected error clearing automation runs")
        return api_error(E.DATABASE, "Database error")
    return jsonify({"deleted": deleted})


@automation_bp.route("/orphan-callbacks", methods=["GET"])
def list_orphan_callbacks():
    """Callbacks that could not be attributed to a run, newest first."""
    q = OrphanCallback.query
    channel = request.args.get("channel")
    if channel:
        q = q.filter(OrphanCallback.channel == channel)
    q = q.order_by(OrphanCallback.received_at.desc(), OrphanCallback.id.desc())
    items, total, limit, offset = paginate_query(q)
    return jsonify({
        "items": [o.to_dict() for o in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })
