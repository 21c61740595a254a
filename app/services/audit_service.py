"""
Audit service.

Builds the actor/network context for an audit entry and writes it without
ever interrupting the business operation that triggered it.

    ctx = extract_audit_context()
    record_event("automation.trigger", resource_type="automation_run",
                 resource_id=run.id, details={...}, context=ctx)

Outside a request (scheduled jobs) the context is the fixed system
context: ip "system", user agent "scheduled-task", session "system".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_request_context, request

from app.models import db
from app.models.audit import AuditLog, write_audit
from app.services.session_store import EXTENSION_KEY

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
SESSION_HEADER = "X-Session-Token"


@dataclass
class AuditContext:
    actor: str = SYSTEM_ACTOR
    user_id: int | None = None
    organization_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None


def system_context() -> AuditContext:
    """Context used for work that is not tied to an HTTP request."""
    return AuditContext(
        actor=SYSTEM_ACTOR,
        ip_address="system",
        user_agent="scheduled-task",
        session_id="system",
    )


def _get_client_ip() -> str | None:
    """Return real client IP, honouring X-Forwarded-For and X-Real-IP from proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        # First entry in the comma-delimited list is the client
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr


def extract_audit_context() -> AuditContext:
    """Collect who/where metadata from the current request, if any."""
    if not has_request_context():
        return system_context()

    ctx = AuditContext(
        actor=request.headers.get("X-User", "").strip() or SYSTEM_ACTOR,
        ip_address=_get_client_ip(),
        user_agent=request.headers.get("User-Agent", "") or None,
    )

    token = request.headers.get(SESSION_HEADER, "").strip()
    store = current_app.extensions.get(EXTENSION_KEY)
    if token and store is not None:
        session = store.resolve(token)
        if session is not None:
            ctx.session_id = str(session.id)
            ctx.user_id = session.user_id
            ctx.organization_id = session.organization_id
            if ctx.actor == SYSTEM_ACTOR:
                ctx.actor = session.user_email
    return ctx


def record_event(
    action: str,
    *,
    resource_type: str | None = None,
    resource_id: str | int | None = None,
    details: dict | None = None,
    context: AuditContext | None = None,
    retention_category: str = "audit_logs",
) -> AuditLog | None:
    """Write one audit entry; failures are logged and swallowed.

    Callers commit their own changes first, so a failed audit write can
    only roll back the audit row itself.

    Returns the entry, or None if it could not be written.
    """
    ctx = context or extract_audit_context()
    try:
        entry = write_audit(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            actor=ctx.actor,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            session_id=ctx.session_id,
            retention_category=retention_category,
        )
        db.session.commit()
        return entry
    except Exception:
        logger.exception("Audit write failed for %s %s/%s", action, resource_type, resource_id)
        db.session.rollback()
        return None

