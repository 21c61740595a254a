"""
Workflow Chain Gateway.

All outbound HTTP calls to the external workflow ("chain run") service go
through this class. Direct `requests` calls in services or blueprints are
FORBIDDEN.

  - Exactly one POST per trigger: starting a chain is not idempotent
    upstream, so there is no retry loop here.
  - Timeout: 30 s default, overridable per call (AUTOMATION_TRIGGER_TIMEOUT).
  - Structured result returned to the service; the service writes the ledger.

Testability: pass a mock `session` to ChainGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 30

# Response bodies are kept verbatim for diagnostics but capped.
_MAX_BODY_CHARS = 20_000


class GatewayResult:
    """Structured return value from ChainGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        text:           Raw response body, or the error text on network failure.
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        text: str,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.text = text
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.payload_hash = payload_hash

    def to_log_dict(self) -> dict:
        """Return fields suitable for an audit entry."""
        return {
            "http_status_code": self.status_code,
            "error_message": self.error,
            "duration_ms": self.duration_ms,
            "payload_hash": self.payload_hash,
            "result": "success" if self.ok else "error",
        }


class ChainGateway:
    """External workflow service gateway.

    Instantiate once at module level (module-level singleton pattern).
    Pass a custom `session` in tests to intercept HTTP calls without
    making real network requests.

    Usage:
        from app.integrations import chain_gateway as gw_module
        result = gw_module.chain_gateway.start_run(url, body, timeout=30)
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _compute_payload_hash(self, payload: dict | list | None) -> str | None:
        """Return SHA-256 hex digest of the JSON-serialised payload."""
        if payload is None:
            return None
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    @staticmethod
    def _parse_json(text: str) -> dict | list | None:
        """Parse *text* as JSON, returning None for empty or malformed bodies."""
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError:
            return None
        return data if isinstance(data, (dict, list)) else None

    # ── Chain run trigger ────────────────────────────────────────────────────

    def start_run(
        self,
        url: str,
        body: dict[str, Any],
        *,
        timeout: int | float = _DEFAULT_TIMEOUT,
    ) -> GatewayResult:
        """POST a start-chain-run request.

        Args:
            url:      Full URL of the workflow service's start endpoint.
            body:     JSON-serialisable request body.
            timeout:  Per-request timeout in seconds.

        Returns:
            GatewayResult; always returns (never raises). Callers check .ok.
            On a network failure ``text`` carries ``"Error: <message>"`` so the
            ledger keeps a human-readable diagnostic.
        """
        payload_hash = self._compute_payload_hash(body)
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
        }

        t0 = time.perf_counter()
        try:
            resp = self.session.post(url, json=body, headers=headers, timeout=timeout)
        except requests.Timeout:
            error = f"Request timed out after {timeout}s"
            logger.warning("Chain trigger timed out url=%s timeout=%ss", url, timeout)
            return GatewayResult(
                ok=False,
                status_code=None,
                text=f"Error: {error}",
                data=None,
                error=error,
                duration_ms=int(timeout * 1000),
                payload_hash=payload_hash,
            )
        except requests.RequestException as exc:
            error = str(exc)[:500]
            logger.warning("Chain trigger network error url=%s error=%s", url, error)
            return GatewayResult(
                ok=False,
                status_code=None,
                text=f"Error: {error}",
                data=None,
                error=error,
                duration_ms=int((time.perf_counter() - t0) * 1000),
                payload_hash=payload_hash,
            )

        duration_ms = int((time.perf_counter() - t0) * 1000)
        text = (resp.text or "")[:_MAX_BODY_CHARS]

        if resp.ok:
            logger.info(
                "Chain trigger accepted status=%d duration=%dms",
                resp.status_code, duration_ms,
            )
            return GatewayResult(
                ok=True,
                status_code=resp.status_code,
                text=text,
                data=self._parse_json(text),
                error=None,
                duration_ms=duration_ms,
                payload_hash=payload_hash,
            )

        logger.warning(
            "Chain trigger rejected status=%d url=%s body=%s",
            resp.status_code, url, text[:200],
        )
        return GatewayResult(
            ok=False,
            status_code=resp.status_code,
            text=text,
            data=self._parse_json(text),
            error=f"HTTP {resp.status_code}: {text[:500]}",
            duration_ms=duration_ms,
            payload_hash=payload_hash,
        )


# Module-level singleton; import this instance in services.
# In tests, override via:
#   from app.integrations import chain_gateway as gw_module
#   gw_module.chain_gateway = ChainGateway(session=mock_session)
chain_gateway = ChainGateway()
