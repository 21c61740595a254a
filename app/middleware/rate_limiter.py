"""
Per-blueprint rate limits.

The Limiter in app/__init__.py has no default limit; each blueprint gets the
budget of its traffic class here.  Limits are keyed by remote IP and can be
overridden with RATELIMIT_<CLASS> (e.g. RATELIMIT_INGRESS="1200/minute").

    init_rate_limits(app, limiter)    # after blueprints are registered
"""

import logging
import os

logger = logging.getLogger(__name__)

# Upstream agents deliver callbacks in bursts; ingress must stay well above them.
_DEFAULT_LIMITS = {
    "ingress": "600/minute",
    "trigger": "30/minute",
    "admin": "120/minute",
}

# (blueprint, traffic class, methods); methods=None covers every method.
# Only POST on the automation blueprint starts a chain; its reads and the
# clear-all are dashboard and admin traffic.
BLUEPRINT_LIMITS = (
    ("callbacks", "ingress", None),
    ("automation", "trigger", ["POST"]),
    ("automation", "admin", ["GET", "DELETE"]),
    ("chain_presets", "admin", None),
    ("audit", "admin", None),
    ("scheduler", "admin", None),
)

_EXEMPT_BLUEPRINTS = ("health",)


def limit_for(traffic_class: str) -> str:
    return os.getenv(f"RATELIMIT_{traffic_class.upper()}", _DEFAULT_LIMITS[traffic_class])


def init_rate_limits(app, limiter):
    """Attach limits to registered blueprints; no-op under TESTING."""
    if app.config.get("TESTING"):
        logger.debug("Rate limiter disabled (TESTING=True)")
        return

    applied = []
    for bp_name, traffic_class, methods in BLUEPRINT_LIMITS:
        bp = app.blueprints.get(bp_name)
        if bp is None:
            continue
        limit = limit_for(traffic_class)
        limiter.limit(limit, methods=methods)(bp)
        applied.append(f"{bp_name}[{','.join(methods or ['*'])}]={limit}")

    for bp_name in _EXEMPT_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp is not None:
            limiter.exempt(bp)

    logger.info("Rate limits applied: %s", ", ".join(applied))
