"""
Service-layer exception hierarchy.

Services raise these; blueprints turn them into JSON error envelopes with
``app.utils.errors.error_response``.  Anything that escapes a view is
caught by the ``EnrollmentError`` handler registered in the app factory.

    raise NotFoundError(resource="AutomationRun", resource_id=42)
    raise ValidationError("starting_variables must be an object",
                          details={"starting_variables": "not_a_mapping"})
"""


class EnrollmentError(Exception):
    """Base class. ``code`` and ``status`` drive the HTTP envelope."""

    code = "ERR_INTERNAL"
    status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    @property
    def public_message(self) -> str:
        return str(self)


class NotFoundError(EnrollmentError):
    """A ledger row, preset or job that the caller referenced does not exist.

    The key is kept on the exception for logs; ``public_message`` leaves it
    out so run identifiers are not echoed back to callers.
    """

    code = "ERR_NOT_FOUND"
    status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        suffix = f" id={resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{suffix} not found")

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(EnrollmentError):
    """Well-formed input that breaks a business rule (HTTP 422).

    Malformed requests (missing JSON keys) are answered with 400 directly
    in the blueprint and never reach the service.
    """

    code = "ERR_VALIDATION_RULE"
    status = 422


class ConflictError(EnrollmentError):
    """A unique key (run identifier, preset name) is already taken."""

    code = "ERR_CONFLICT_DUPLICATE"
    status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists",
                         details={"field": field})
