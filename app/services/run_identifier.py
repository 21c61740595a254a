"""
Run identifier extraction.

The workflow service answers a start-chain-run request in several shapes
depending on which backend handled the chain. Each known shape is one
strategy; strategies are tried in order and the first non-empty value wins.

    extractor = RunIdentifierExtractor()          # default strategy order
    rid = extractor.extract(raw_text, parsed_json)

Adding a new response shape means appending a strategy, never editing an
existing one.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable

logger = logging.getLogger(__name__)

CANONICAL_FIELD = "ChainRun_ID"

ROW_ID_FIELDS = ("Run_ID", "_RowNumber", "ID", "Run_Auto_Key", "Chain_Run_Key", "id")
GENERIC_ID_FIELDS = ("id", "runId", "chainRunId", "uniqueId")

_CANONICAL_PATTERN = re.compile(r'"ChainRun_ID"\s*:\s*"([^"]+)"')
_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9\-_]{15,}")


def _parses_as_json(raw_text: str | None) -> bool:
    try:
        json.loads(raw_text or "")
    except ValueError:
        return False
    return True


def _as_identifier(value: Any) -> str | None:
    """Normalise a candidate value; booleans, containers and blanks are rejected."""
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    return text or None


class ExtractionStrategy(ABC):
    """One way of finding a run identifier in a trigger response."""

    name: str = "strategy"

    @abstractmethod
    def extract(self, raw_text: str, data: dict | list | None) -> str | None:
        """Return the identifier or None when this shape does not apply."""


class CanonicalFieldStrategy(ExtractionStrategy):
    """Top-level ``ChainRun_ID``; falls back to a text match for broken JSON."""

    name = "canonical_field"

    def extract(self, raw_text, data):
        if isinstance(data, dict):
            found = _as_identifier(data.get(CANONICAL_FIELD))
            if found:
                return found
        match = _CANONICAL_PATTERN.search(raw_text or "")
        return _as_identifier(match.group(1)) if match else None


class NestedRowsStrategy(ExtractionStrategy):
    """Table-style reply: ``{"responses": [{"rows": [{...}]}]}``."""

    name = "nested_rows"

    def __init__(self, fields: Iterable[str] = ROW_ID_FIELDS) -> None:
        self.fields = tuple(fields)

    def extract(self, raw_text, data):
        if not isinstance(data, dict):
            return None
        responses = data.get("responses")
        if not isinstance(responses, list) or not responses:
            return None
        first = responses[0]
        rows = first.get("rows") if isinstance(first, dict) else None
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        row = rows[0]
        for field in self.fields:
            found = _as_identifier(row.get(field))
            if found:
                return found
        return None


class GenericFieldStrategy(ExtractionStrategy):
    """Common id-like field names at the top level."""

    name = "generic_field"

    def __init__(self, fields: Iterable[str] = GENERIC_ID_FIELDS) -> None:
        self.fields = tuple(fields)

    def extract(self, raw_text, data):
        if not isinstance(data, dict):
            return None
        for field in self.fields:
            found = _as_identifier(data.get(field))
            if found:
                return found
        return None


class TokenScanStrategy(ExtractionStrategy):
    """Last resort for bodies that are not JSON at all.

    Returns the first opaque token of 15+ ``[A-Za-z0-9-_]`` characters.  A body
    that parses as JSON never reaches the scan: its keys and values are not
    identifiers.
    """

    name = "token_scan"

    def extract(self, raw_text, data):
        if data is not None or _parses_as_json(raw_text):
            return None
        match = _TOKEN_PATTERN.search(raw_text or "")
        return match.group(0) if match else None


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    CanonicalFieldStrategy(),
    NestedRowsStrategy(),
    GenericFieldStrategy(),
    TokenScanStrategy(),
)


class RunIdentifierExtractor:
    """Ordered rule list; deterministic for identical input."""

    def __init__(self, strategies: Iterable[ExtractionStrategy] | None = None) -> None:
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)

    def extract(self, raw_text: str, data: dict | list | None = None) -> str | None:
        for strategy in self.strategies:
            try:
                found = strategy.extract(raw_text, data)
            except (AttributeError, KeyError, TypeError, IndexError):
                logger.debug("Strategy %s could not read response shape", strategy.name)
                continue
            if found:
                logger.debug("Run identifier found by %s: %s", strategy.name, found)
                return found
        return None


default_extractor = RunIdentifierExtractor()


def extract_run_identifier(raw_text: str, data: dict | list | None = None) -> str | None:
    """Module-level shortcut using the default strategy order."""
    return default_extractor.extract(raw_text, data)
