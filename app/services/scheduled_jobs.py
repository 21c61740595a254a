"""
Patient Enrollment Platform
Scheduled Job Definitions.

Background jobs registered with SchedulerService:
    1. retention_cleanup    — Daily at 02:00: purge records past their retention horizon
    2. system_health_check  — Sundays at 03:00: database ping + ledger backlog summary

Times are wall-clock in SCHEDULER_TIMEZONE.
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.retention_service import run_health_check, run_retention_sweep
from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Retention Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("retention_cleanup")
def retention_cleanup(app) -> dict[str, Any]:
    """Delete audit entries, runs, orphan callbacks and sessions past their retention horizon."""
    summary = run_retention_sweep()
    logger.info("Retention cleanup: %d records removed", summary["total"],
                extra={"job_name": "retention_cleanup"})
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: System Health Check
# ═══════════════════════════════════════════════════════════════════════════

@register_job("system_health_check")
def system_health_check(app) -> dict[str, Any]:
    """Record a weekly health snapshot of the database and the run ledger."""
    return run_health_check()
