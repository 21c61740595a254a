"""
Patient Enrollment Platform
Scheduler Service.

Runs the periodic maintenance jobs (retention cleanup, health check) on a
background daemon thread, with run history persisted per job.

Architecture:
    - Job functions registered via the ``@register_job`` decorator
    - Jobs are stored in the ScheduledJob model for persistence
    - Each job's ``schedule_config`` ({day_of_week, hour, minute}) is
      evaluated in ``SCHEDULER_TIMEZONE`` to compute its next fire time
    - Timer thread wakes every ``SCHEDULER_POLL_SECONDS`` and runs due jobs
    - Manual trigger API for development and testing
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("retention_cleanup")
        def retention_cleanup(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


# ═══════════════════════════════════════════════════════════════════════════
#  Fire-time calculation
# ═══════════════════════════════════════════════════════════════════════════

_WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_fire_time(schedule_config: dict | None, after: datetime, tz_name: str) -> datetime:
    """Return the first fire time strictly after *after*, as an aware UTC datetime.

    ``schedule_config`` holds wall-clock fields in *tz_name*: ``hour``,
    ``minute`` and optionally ``day_of_week`` (mon..sun). Without a
    weekday the job fires daily.
    """
    config = schedule_config or {}
    hour = int(config.get("hour", 0))
    minute = int(config.get("minute", 0))
    day_of_week = config.get("day_of_week")
    weekday = _WEEKDAYS[str(day_of_week).lower()[:3]] if day_of_week else None

    tz = ZoneInfo(tz_name)
    local_after = _as_utc(after).astimezone(tz)
    for offset in range(8):
        day = (local_after + timedelta(days=offset)).date()
        candidate = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
        if candidate <= local_after:
            continue
        if weekday is not None and candidate.weekday() != weekday:
            continue
        return candidate.astimezone(timezone.utc)
    raise ValueError(f"Could not compute next fire time for {config!r}")


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _running: bool = False
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def _timezone(cls) -> str:
        return cls._app.config.get("SCHEDULER_TIMEZONE", "America/New_York")

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config and a first fire time.
        """
        if not cls._app:
            return []

        created = []
        now = datetime.now(timezone.utc)
        with cls._app.app_context():
            for name, _fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    schedule = _get_default_schedule(name)
                    job = ScheduledJob(
                        job_name=name,
                        description=(_fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_config=schedule,
                        status="active",
                        is_enabled=True,
                        next_run_at=next_fire_time(schedule, now, cls._timezone()),
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    # ── Timer loop ───────────────────────────────────────────────────────

    @classmethod
    def start(cls) -> bool:
        """Start the background timer thread; returns False if already running."""
        if not cls._app:
            raise RuntimeError("Scheduler not initialized")
        if cls._running:
            return False
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(target=cls._loop, name="scheduler", daemon=True)
        cls._running = True
        cls._thread.start()
        logger.info("Scheduler started (timezone=%s)", cls._timezone())
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if not cls._running:
            return
        cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._running = False
        cls._thread = None
        logger.info("Scheduler stopped")

    @classmethod
    def is_running(cls) -> bool:
        return cls._running

    @classmethod
    def _loop(cls) -> None:
        poll = cls._app.config.get("SCHEDULER_POLL_SECONDS", 30)
        while not cls._stop_event.is_set():
            try:
                cls.tick()
            except Exception:
                # A failing cycle must not stop future cycles.
                logger.exception("Scheduler tick failed")
            cls._stop_event.wait(poll)

    @classmethod
    def tick(cls, now: datetime | None = None) -> list[str]:
        """Run every enabled job whose next fire time has passed.

        The next fire time is advanced before the job runs, so a job that
        fails is retried at its next slot rather than on every tick.

        Returns the names of the jobs that were run.
        """
        if not cls._app:
            return []
        now = now or datetime.now(timezone.utc)
        tz_name = cls._timezone()
        due = []
        with cls._app.app_context():
            jobs = ScheduledJob.query.filter(
                ScheduledJob.is_enabled.is_(True),
                ScheduledJob.job_name.in_(list(_job_registry)),
            ).all()
            for job in jobs:
                if job.is_due(now):
                    due.append(job.job_name)
                elif job.next_run_at is not None:
                    continue
                job.next_run_at = next_fire_time(job.schedule_config, now, tz_name)
            db.session.commit()

        for name in due:
            cls.run_job(name)
        return due

    # ── Execution & admin ────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        logger.info("Job %s finished: %s (%dms)", job_name, status, duration_ms,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs in registration order, each with its persisted state."""
        records = {
            job.job_name: job
            for job in ScheduledJob.query.filter(ScheduledJob.job_name.in_(list(_job_registry)))
        }
        return [
            records[name].to_dict() if name in records else {"job_name": name, "status": None}
            for name in _job_registry
        ]

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return job_record.to_dict() if job_record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job. Resuming schedules the next slot from now, skipping missed ones."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record is None:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        if enabled and cls._app:
            job_record.next_run_at = next_fire_time(
                job_record.schedule_config, datetime.now(timezone.utc), cls._timezone(),
            )
        db.session.commit()
        logger.info("Scheduled job %s %s", job_name, job_record.status,
                    extra={"job_name": job_name})
        return job_record.to_dict()


# Wall-clock cadences in SCHEDULER_TIMEZONE.
_DEFAULT_SCHEDULES = {
    "retention_cleanup": {"hour": "2", "minute": "0", "description": "Daily at 02:00"},
    "system_health_check": {"day_of_week": "sun", "hour": "3", "minute": "0",
                            "description": "Sundays at 03:00"},
}


def _get_default_schedule(job_name: str) -> dict:
    return dict(_DEFAULT_SCHEDULES.get(
        job_name, {"hour": "0", "minute": "0", "description": "Daily at midnight"},
    ))
