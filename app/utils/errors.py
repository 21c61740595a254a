"""Standardised API error responses.

Every non-2xx body produced by a blueprint has the same shape::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.  Use ``api_error`` when the view decides
the failure itself and ``error_response`` when re-raising a service
exception.

    return api_error(E.VALIDATION_REQUIRED, "chain_name is required")
    return api_error(E.UPSTREAM, "Chain trigger failed", details=outcome.to_dict())

    except NotFoundError as exc:
        return error_response(exc)
"""

from __future__ import annotations

from flask import jsonify

from app.core.exceptions import EnrollmentError


class E:
    """Machine-readable error codes, all prefixed ``ERR_``."""

    # 400: request is missing something the view needs before calling a service
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    # 422: service-level business rule
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # The workflow system refused or never answered the trigger
    UPSTREAM = "ERR_UPSTREAM"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.UPSTREAM: 502,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return ``(jsonify(body), status)`` for a view to hand straight back.

    ``status`` defaults to the code's mapping in ``_DEFAULT_STATUS``, then 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def error_response(exc: EnrollmentError, *, code: str | None = None):
    """Build the envelope for a service exception.

    ``code`` overrides the exception's own code when a view needs a
    different status, e.g. a missing preset name answered with 400.
    """
    code = code or exc.code
    return api_error(
        code,
        exc.public_message,
        status=None if code != exc.code else exc.status,
        details=exc.details,
    )
