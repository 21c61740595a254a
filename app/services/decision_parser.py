"""
Decision-text parser.

Turns the free-form analysis text returned by the workflow agents into a
structured decision record:

    APPROVAL LIKELIHOOD: Medium
    CRITERIA ASSESSMENT
    ✓ Age over 65
    ✗ Missing referral
    DOCUMENTATION GAPS
    - Referral letter
    RECOMMENDATIONS
    1. Request referral

The parser is a line-oriented state machine; every state owns one line
handler so each section can be exercised on its own. It never raises:
unknown lines are ignored and missing sections come back empty.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

NO_CONTENT_SENTINELS = frozenset({
    "No response content",
    "Webhook received (no response content)",
})

PASS_GLYPHS = ("✓", "✔", "✅")
FAIL_GLYPHS = ("✗", "✘", "❌")
_BULLETS = "•-–*"
_GAP_MARKERS = ("-", "–", "—")

_APPROVAL_HEADER = "APPROVAL LIKELIHOOD"
# Markdown emphasis, heading marks and bullets the agents wrap headers in.
_DECORATION = "#*_" + _BULLETS + " \t"
_RECOMMENDATION_LINE = re.compile(r"^\d+\.\s*(.*)$")


class ParserState(str, Enum):
    NONE = "none"
    APPROVAL = "approval"
    CRITERIA = "criteria"
    GAPS = "gaps"
    RECOMMENDATIONS = "recommendations"


# Section headers other than APPROVAL LIKELIHOOD (which carries a value).
_SECTION_HEADERS: tuple[tuple[str, ParserState], ...] = (
    ("CRITERIA ASSESSMENT", ParserState.CRITERIA),
    ("DOCUMENTATION GAPS", ParserState.GAPS),
    ("RECOMMENDATIONS", ParserState.RECOMMENDATIONS),
    ("ALTERNATIVE STRATEGIES", ParserState.NONE),
)


@dataclass
class CriterionItem:
    text: str
    status: str  # passed | failed | unknown

    def to_dict(self) -> dict:
        return {"text": self.text, "status": self.status}


@dataclass
class DecisionRecord:
    """Structured interpretation of one analysis text."""
    approval_likelihood: str = ""
    criteria_items: list[CriterionItem] = field(default_factory=list)
    documentation_gaps: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    available: bool = True

    @classmethod
    def unavailable(cls) -> DecisionRecord:
        return cls(available=False)

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "approval_likelihood": self.approval_likelihood,
            "criteria_items": [c.to_dict() for c in self.criteria_items],
            "documentation_gaps": list(self.documentation_gaps),
            "recommendations": list(self.recommendations),
        }


def is_unavailable_content(text: str | None) -> bool:
    """True for empty text and for the placeholder strings used when no analysis arrived."""
    if text is None:
        return True
    stripped = text.strip()
    return not stripped or stripped in NO_CONTENT_SENTINELS


# ── Line handlers (one per state) ────────────────────────────────────────────

def _strip_bullet(text: str) -> str:
    return text.lstrip(_BULLETS).strip()


def handle_criteria_line(line: str, record: DecisionRecord) -> None:
    status = None
    if any(g in line for g in PASS_GLYPHS):
        status = "passed"
    elif any(g in line for g in FAIL_GLYPHS):
        status = "failed"
    if status is None:
        return
    text = line
    for glyph in PASS_GLYPHS + FAIL_GLYPHS:
        text = text.replace(glyph, "")
    text = _strip_bullet(text.strip())
    if text:
        record.criteria_items.append(CriterionItem(text=text, status=status))


def handle_gap_line(line: str, record: DecisionRecord) -> None:
    if line.startswith(_GAP_MARKERS):
        gap = line.lstrip("".join(_GAP_MARKERS)).strip()
        if gap:
            record.documentation_gaps.append(gap)


def handle_recommendation_line(line: str, record: DecisionRecord) -> None:
    match = _RECOMMENDATION_LINE.match(line)
    if match and match.group(1).strip():
        record.recommendations.append(match.group(1).strip())


def _ignore_line(line: str, record: DecisionRecord) -> None:
    return None


_HANDLERS = {
    ParserState.NONE: _ignore_line,
    # The likelihood value is taken from the header line itself.
    ParserState.APPROVAL: _ignore_line,
    ParserState.CRITERIA: handle_criteria_line,
    ParserState.GAPS: handle_gap_line,
    ParserState.RECOMMENDATIONS: handle_recommendation_line,
}


def _match_header(line: str, record: DecisionRecord) -> ParserState | None:
    """Return the new state when *line* is a section header, else None.

    ``**APPROVAL LIKELIHOOD:** High`` and ``## CRITERIA ASSESSMENT`` are
    headers just like their undecorated forms.
    """
    bare = line.strip(_DECORATION)
    upper = bare.upper()
    if upper.startswith(_APPROVAL_HEADER):
        value = bare[len(_APPROVAL_HEADER):]
        record.approval_likelihood = value.strip(_DECORATION + ":")
        return ParserState.APPROVAL
    for header, state in _SECTION_HEADERS:
        if upper.startswith(header):
            return state
    return None


def parse_decision_text(text: str | None) -> DecisionRecord:
    """Parse *text* into a DecisionRecord; placeholders give an unavailable record."""
    if is_unavailable_content(text):
        return DecisionRecord.unavailable()

    record = DecisionRecord()
    state = ParserState.NONE
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        new_state = _match_header(line, record)
        if new_state is not None:
            state = new_state
            continue
        _HANDLERS[state](line, record)

    logger.debug(
        "Decision parsed: likelihood=%r criteria=%d gaps=%d recommendations=%d",
        record.approval_likelihood, len(record.criteria_items),
        len(record.documentation_gaps), len(record.recommendations),
    )
    return record
