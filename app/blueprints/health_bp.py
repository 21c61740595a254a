"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — summary used by the dashboard
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, scheduler, ledger backlog)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.models import db
from app.models.automation import AutomationRun, OrphanCallback
from app.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "service": "patient-enrollment-automation"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Ledger backlog ───────────────────────────────────────────────
    if overall:
        checks["ledger"] = {
            "pending_runs": AutomationRun.query.filter_by(status="pending").count(),
            "orphan_callbacks": OrphanCallback.query.count(),
        }

    # ── Scheduler ────────────────────────────────────────────────────
    checks["scheduler"] = {
        "enabled": bool(current_app.config.get("SCHEDULER_ENABLED")),
        "running": SchedulerService.is_running(),
        "timezone": current_app.config.get("SCHEDULER_TIMEZONE"),
    }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Patient Enrollment Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
