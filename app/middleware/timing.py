"""
Request timing and correlation-id middleware.

Every response carries ``X-Request-ID`` (echoed from the caller when it is a
sane token, generated otherwise) and ``X-Request-Duration-Ms``.  Callback
ingress requests are always logged at INFO: they are the only evidence of
when an external agent reported back.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes hit these every few seconds.
_QUIET_PATHS = frozenset({
    "/api/v1/health",
    "/api/v1/health/ready",
    "/webhook/agents/health",
})

_INGRESS_PATHS = ("/webhook/agents", "/api/v1/email-webhook")

SLOW_THRESHOLD_MS = 1000

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id() -> str:
    candidate = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return uuid.uuid4().hex[:12]


def _level_for(path: str, status: int, duration_ms: float) -> int:
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    if status >= 500:
        return logging.ERROR
    if path.startswith(_INGRESS_PATHS) and request.method == "POST":
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = _incoming_request_id()

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        request_id = getattr(g, "request_id", "")
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = request_id

        if request.path in _QUIET_PATHS:
            return response

        level = _level_for(request.path, response.status_code, duration_ms)
        logger.log(
            level, "%s %s %d (%.0fms)",
            request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
                "remote_addr": request.remote_addr,
                "request_id": request_id,
            },
        )
        return response
