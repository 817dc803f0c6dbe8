"""Unit tests for the draft validation gate (structural + semantic mapping)."""

from reqloom.core.analysis.models import Severity, WorkflowStatus
from reqloom.core.analysis.validation import (
    build_report,
    check_structure,
    draft_to_text,
    semantic_issues,
    semantic_status,
    validate_draft,
)


class TestStructure:

    def test_complete_draft_is_validated(self, draft):
        report = validate_draft(draft)

        assert report.status == WorkflowStatus.VALIDATED
        assert report.issues == []
        assert report.semantic_status is None

    def test_empty_purpose_needs_fix(self, draft):
        draft["introduction"]["purpose"] = ""

        report = validate_draft(draft)

        assert report.status == WorkflowStatus.NEEDS_FIX
        critical = [i for i in report.issues if i.severity == Severity.CRITICAL]
        assert len(critical) == 1
        assert critical[0].section == "Introduction"
        assert critical[0].field == "purpose"

    def test_whitespace_only_counts_as_empty(self, draft):
        draft["overallDescription"]["userClasses"] = {"content": "   "}
        assert validate_draft(draft).status == WorkflowStatus.NEEDS_FIX

    def test_short_field_only_warns(self, draft):
        draft["introduction"]["scope"] = "Login"

        report = validate_draft(draft)

        assert report.status == WorkflowStatus.VALIDATED
        assert [i.field for i in report.issues] == ["scope"]
        assert report.issues[0].severity == Severity.WARNING

    def test_missing_recommended_fields_warn(self, draft):
        del draft["nonFunctional"]

        issues = check_structure(draft)

        assert {i.field for i in issues} == {"performance", "security"}
        assert all(i.severity == Severity.WARNING for i in issues)

    def test_no_features_is_critical(self, draft):
        draft["systemFeatures"]["features"] = []

        issues = check_structure(draft)

        assert issues[0].section == "System Features"
        assert issues[0].severity == Severity.CRITICAL

    def test_incomplete_feature(self, draft):
        draft["systemFeatures"]["features"].append({"name": "Reset"})

        messages = [i.message for i in check_structure(draft)]

        assert messages == [
            "Reset has no description.",
            "Reset lists no functional requirements.",
        ]

    def test_malformed_payload(self):
        issues = check_structure({"systemFeatures": {"features": "nope"}})

        assert len(issues) == 1
        assert issues[0].section == "Draft"
        assert issues[0].severity == Severity.CRITICAL


class TestSemantic:

    def test_mismatch_is_blocker(self):
        issues = semantic_issues({
            "validation_status": "FAIL",
            "issues": [{
                "section_id": "4",
                "subsection_id": "4.1",
                "title": "Drift",
                "issue_type": "semantic_mismatch",
                "severity": "warning",
                "description": "Feature contradicts scope.",
            }],
        })

        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].section == "System Features"
        assert issues[0].message == "Drift: Feature contradicts scope."
        assert semantic_status(issues) == "FAIL"

    def test_warnings_still_pass(self):
        issues = semantic_issues({"issues": [{"subsection_id": "2.3", "issue_type": "AMBIGUITY"}]})

        assert issues[0].severity == Severity.WARNING
        assert issues[0].section == "Overall Description"
        assert semantic_status(issues) == "PASS"

    def test_null_fields_take_defaults(self):
        issues = semantic_issues({"issues": [{"severity": None, "issue_type": None}]})

        assert issues[0].severity == Severity.WARNING
        assert issues[0].issue_type == "OTHER"
        assert issues[0].section == "General"

    def test_report_combines_layers(self, draft):
        semantic = semantic_issues({"issues": [{"section_id": "1", "severity": "BLOCKER"}]})

        report = build_report(check_structure(draft), semantic)

        assert report.status == WorkflowStatus.NEEDS_FIX
        assert report.semantic_status == "FAIL"
        assert report.to_dict()["issues"][0]["severity"] == "critical"


class TestDraftToText:

    def test_flattens_filled_sections(self, draft):
        text = draft_to_text(draft)

        assert text.startswith("## Introduction\npurpose: Let customers sign in")
        assert "### Login" in text
        assert "functionalRequirements: Reject invalid credentials" in text
        assert "## External Interface Requirements" not in text
