"""
Scheduler admin blueprint.

Endpoints:
    GET   /api/v1/scheduler/jobs                   list jobs, next fire time, run history
    GET   /api/v1/scheduler/jobs/<name>            single job
    POST  /api/v1/scheduler/jobs/<name>/trigger    run a job now, outside its cadence
    PATCH /api/v1/scheduler/jobs/<name>/toggle     {"enabled": bool}

Unknown job names raise NotFoundError and are answered by the app-level
handler with the standard error envelope.
"""

import logging

from flask import Blueprint, jsonify, request

from app.core.exceptions import NotFoundError
from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1")


def _require_job(job_name):
    if job_name not in get_registered_jobs():
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)


@scheduler_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({
        "jobs": jobs,
        "total": len(jobs),
        "running": SchedulerService.is_running(),
    })


@scheduler_bp.route("/scheduler/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    _require_job(job_name)
    job = SchedulerService.get_job_status(job_name)
    if job is None:
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    return jsonify(job)


@scheduler_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Run a job synchronously; failures come back in the body with 200."""
    _require_job(job_name)
    logger.info("Manual trigger of scheduled job %s", job_name)
    return jsonify(SchedulerService.run_job(job_name))


@scheduler_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'enabled' must be true or false")

    _require_job(job_name)
    result = SchedulerService.toggle_job(job_name, enabled)
    if result is None:
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    return jsonify(result)
