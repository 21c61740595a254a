"""
Automation Service: chain trigger orchestration.

Starts an external workflow ("chain") run, extracts the run identifier the
workflow system hands back, and records the run in the ledger as
``pending`` (identifier known or not) or ``error`` (trigger failed).

Layer rule: blueprint → this service → ChainGateway / run_ledger.
The gateway never raises, so every trigger attempt produces exactly one
ledger row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from flask import current_app

from app.core.exceptions import ConflictError, ValidationError
from app.integrations import chain_gateway as gw_module
from app.models.automation import AutomationRun
from app.services import run_ledger
from app.services.audit_service import AuditContext, record_event
from app.services.run_identifier import extract_run_identifier

logger = logging.getLogger(__name__)


@dataclass
class TriggerOutcome:
    run: AutomationRun
    raw_response: str
    run_identifier: str | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "run": self.run.to_dict(),
            "raw_response": self.raw_response,
            "run_identifier": self.run_identifier,
            "error": self.error,
        }


def normalize_starting_variables(variables: Any) -> dict[str, str]:
    """Trim keys and values; pairs with a blank key or value are dropped.

    Raises:
        ValidationError: *variables* is not a mapping of strings.
    """
    if variables is None:
        return {}
    if not isinstance(variables, dict):
        raise ValidationError(
            "starting_variables must be an object of string values",
            details={"starting_variables": type(variables).__name__},
        )
    cleaned: dict[str, str] = {}
    for key, value in variables.items():
        if not isinstance(key, str) or not isinstance(value, (str, type(None))):
            raise ValidationError(
                "starting_variables must be an object of string values",
                details={"starting_variables": str(key)},
            )
        key = key.strip()
        value = (value or "").strip()
        if key and value:
            cleaned[key] = value
    return cleaned


def build_request_body(
    chain_name: str,
    trigger_email: str,
    starting_variables: dict[str, str],
    *,
    source_id: str | None = None,
    folder_id: str | None = None,
    first_step_input: str | None = None,
) -> dict[str, Any]:
    """Assemble the start-chain-run body; blank optional fields are omitted."""
    body: dict[str, Any] = {
        "run_email": trigger_email,
        "chain_to_run": chain_name,
        "human_readable_record": current_app.config.get("AUTOMATION_RECORD_LABEL", "external app"),
    }
    optional = {
        "source_id": source_id,
        "folder_id": folder_id,
        "first_step_user_input": first_step_input,
    }
    for key, value in optional.items():
        if value is not None and str(value).strip():
            body[key] = str(value).strip()
    body["starting_variables"] = starting_variables
    return body


def trigger_chain(
    chain_name: str,
    trigger_email: str | None = None,
    starting_variables: dict | None = None,
    source_id: str | None = None,
    folder_id: str | None = None,
    first_step_input: str | None = None,
    context: AuditContext | None = None,
) -> TriggerOutcome:
    """Start one chain run and record it.

    Returns:
        TriggerOutcome whose ``run`` is always persisted. ``error`` is set
        when the workflow system could not be reached or rejected the call.

    Raises:
        ValidationError: missing chain name or malformed starting variables.
    """
    chain_name = (chain_name or "").strip() if isinstance(chain_name, str) else ""
    if not chain_name:
        raise ValidationError("chain_name is required", details={"chain_name": "required"})
    variables = normalize_starting_variables(starting_variables)
    trigger_email = (trigger_email or "").strip() or current_app.config["AUTOMATION_RUN_EMAIL"]

    body = build_request_body(
        chain_name, trigger_email, variables,
        source_id=source_id, folder_id=folder_id, first_step_input=first_step_input,
    )

    result = gw_module.chain_gateway.start_run(
        current_app.config["AUTOMATION_TRIGGER_URL"],
        body,
        timeout=current_app.config.get("AUTOMATION_TRIGGER_TIMEOUT", 30),
    )

    run_identifier = extract_run_identifier(result.text, result.data) if result.ok else None
    run = AutomationRun(
        chain_name=chain_name,
        trigger_email=trigger_email,
        request_payload=body,
        run_identifier=run_identifier,
        status="pending" if result.ok else "error",
        raw_response=result.text,
        http_status=result.status_code,
    )

    error = result.error
    try:
        run_ledger.insert(run)
    except ConflictError as exc:
        # Another run already owns this identifier; keep the response but not the identifier.
        error = str(exc)
        run = AutomationRun(
            chain_name=chain_name,
            trigger_email=trigger_email,
            request_payload=body,
            run_identifier=None,
            status="error",
            raw_response=f"{result.text}\n\nError: {error}",
            http_status=result.status_code,
        )
        run_ledger.insert(run)
        run_identifier = None

    details = {
        "chain_name": chain_name,
        "run_identifier": run_identifier,
        "status": run.status,
        **result.to_log_dict(),
    }
    if error:
        details["error_message"] = error
        logger.warning(
            "Chain %s trigger failed: %s", chain_name, error,
            extra={"run_id": run.id},
        )
    else:
        logger.info(
            "Chain %s triggered run=%s identifier=%s", chain_name, run.id, run_identifier,
            extra={"run_id": run.id, "run_identifier": run_identifier},
        )
        if run_identifier is None:
            logger.warning("Chain %s accepted but no run identifier found in response", chain_name)

    record_event(
        "automation.trigger_failed" if error else "automation.trigger",
        resource_type="automation_run",
        resource_id=run.id,
        details=details,
        context=context,
    )
    return TriggerOutcome(run=run, raw_response=run.raw_response, run_identifier=run_identifier, error=error)


def clear_all_runs(context: AuditContext | None = None) -> int:
    """Administrative reset of the ledger."""
    deleted = run_ledger.clear_all()
    record_event(
        "automation.clear_all",
        resource_type="automation_run",
        details={"deleted": deleted},
        context=context,
    )
    return deleted
