"""
Patient Enrollment Platform
Audit trail blueprint.

Endpoints:
    GET  /api/v1/audit               — list / filter audit logs
    GET  /api/v1/audit/<int:log_id>  — single audit entry
"""

from flask import Blueprint, jsonify, request

from app.models.audit import AuditLog
from app.utils.helpers import get_or_404

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        resource_type — filter by resource type (automation_run, orphan_callback, …)
        resource_id   — filter by resource PK
        action        — filter by action string (prefix match)
        actor         — filter by actor
        session_id    — filter by session
        page          — page number (default 1)
        per_page      — items per page (default 50, max 200)
    """
    q = AuditLog.query

    # ── Filters ──────────────────────────────────────────────────────────
    resource_type = request.args.get("resource_type")
    if resource_type:
        q = q.filter(AuditLog.resource_type == resource_type)

    resource_id = request.args.get("resource_id")
    if resource_id:
        q = q.filter(AuditLog.resource_id == resource_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    actor = request.args.get("actor")
    if actor:
        q = q.filter(AuditLog.actor == actor)

    session_id = request.args.get("session_id")
    if session_id:
        q = q.filter(AuditLog.session_id == session_id)

    # ── Ordering ─────────────────────────────────────────────────────────
    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    # ── Pagination ───────────────────────────────────────────────────────
    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))

    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        "audit_logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    })


# ── Single entry ─────────────────────────────────────────────────────────────

@audit_bp.route("/audit/<int:log_id>", methods=["GET"])
def get_audit_log(log_id):
    log, err = get_or_404(AuditLog, log_id, label="Audit log")
    if err:
        return err
    return jsonify(log.to_dict())
