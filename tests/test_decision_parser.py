"""Unit tests for app.services.decision_parser."""

import pytest

from app.services.decision_parser import (
    DecisionRecord,
    handle_criteria_line,
    handle_gap_line,
    handle_recommendation_line,
    parse_decision_text,
)

FULL_TEXT = """
APPROVAL LIKELIHOOD: Medium

CRITERIA ASSESSMENT
✓ Age 65 or older
• ✗ Missing cardiology referral
✅ LDL-C above threshold
Note: labs pending

DOCUMENTATION GAPS
- Referral letter from cardiologist
— Most recent lipid panel
not a gap line

RECOMMENDATIONS
1. Request referral letter
2. Order updated lipid panel

ALTERNATIVE STRATEGIES
1. Patient assistance program
"""


class TestFullDocument:
    def test_all_sections(self):
        record = parse_decision_text(FULL_TEXT)

        assert record.available is True
        assert record.approval_likelihood == "Medium"
        assert [(c.text, c.status) for c in record.criteria_items] == [
            ("Age 65 or older", "passed"),
            ("Missing cardiology referral", "failed"),
            ("LDL-C above threshold", "passed"),
        ]
        assert record.documentation_gaps == [
            "Referral letter from cardiologist",
            "Most recent lipid panel",
        ]
        assert record.recommendations == ["Request referral letter", "Order updated lipid panel"]

    def test_alternative_strategies_not_captured(self):
        record = parse_decision_text(FULL_TEXT)
        assert "Patient assistance program" not in record.recommendations

    def test_headers_are_case_insensitive(self):
        text = "approval likelihood: High\ncriteria assessment\n✔ ok item\nrecommendations\n1. go"
        record = parse_decision_text(text)
        assert record.approval_likelihood == "High"
        assert record.criteria_items[0].status == "passed"
        assert record.recommendations == ["go"]

    @pytest.mark.parametrize("approval", [
        "**APPROVAL LIKELIHOOD:** Medium",
        "**APPROVAL LIKELIHOOD: Medium**",
        "### Approval Likelihood: **Medium**",
    ])
    def test_markdown_decorated_headers(self, approval):
        text = "\n".join([
            approval,
            "## CRITERIA ASSESSMENT",
            "- ✓ Age 65 or older",
            "- ✗ Missing cardiology referral",
            "### DOCUMENTATION GAPS:",
            "- Referral letter from cardiologist",
            "**RECOMMENDATIONS:**",
            "1. Request referral letter",
            "__ALTERNATIVE STRATEGIES__",
            "1. Patient assistance program",
        ])

        record = parse_decision_text(text)

        assert record.approval_likelihood == "Medium"
        assert [(c.text, c.status) for c in record.criteria_items] == [
            ("Age 65 or older", "passed"),
            ("Missing cardiology referral", "failed"),
        ]
        assert record.documentation_gaps == ["Referral letter from cardiologist"]
        assert record.recommendations == ["Request referral letter"]

    def test_missing_sections_are_empty(self):
        record = parse_decision_text("APPROVAL LIKELIHOOD: Low")
        assert record.approval_likelihood == "Low"
        assert record.criteria_items == []
        assert record.documentation_gaps == []
        assert record.recommendations == []

    def test_text_without_headers(self):
        record = parse_decision_text("Some free text\n- with a dash\n1. and a number")
        assert record.available is True
        assert record.to_dict()["criteria_items"] == []
        assert record.documentation_gaps == []
        assert record.recommendations == []


class TestUnavailable:
    @pytest.mark.parametrize("text", [
        None, "", "   \n  ", "No response content", "Webhook received (no response content)",
    ])
    def test_placeholder_content(self, text):
        record = parse_decision_text(text)
        assert record.available is False
        assert record.to_dict()["available"] is False


class TestLineHandlers:
    def test_criteria_line_without_glyph_ignored(self):
        record = DecisionRecord()
        handle_criteria_line("Plain observation", record)
        assert record.criteria_items == []

    def test_criteria_fail_glyphs(self):
        record = DecisionRecord()
        for line in ("✗ a", "✘ b", "❌ c"):
            handle_criteria_line(line, record)
        assert [c.status for c in record.criteria_items] == ["failed"] * 3
        assert [c.text for c in record.criteria_items] == ["a", "b", "c"]

    def test_gap_markers(self):
        record = DecisionRecord()
        for line in ("- one", "– two", "— three", "four"):
            handle_gap_line(line, record)
        assert record.documentation_gaps == ["one", "two", "three"]

    def test_recommendation_ordinal_stripped(self):
        record = DecisionRecord()
        handle_recommendation_line("12. Twelfth step", record)
        handle_recommendation_line("Step without number", record)
        assert record.recommendations == ["Twelfth step"]
