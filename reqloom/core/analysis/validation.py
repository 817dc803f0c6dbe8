"""Validation gate for structured drafts.

Two layers:
1. ``check_structure`` - pure required-field and minimum-length checks.
2. ``semantic_issues`` - maps the model-driven drift check (see
   ``prompts.build_validation_prompt``) onto the same issue type.

Any critical issue means NEEDS_FIX; otherwise VALIDATED. On the semantic
side, any BLOCKER means FAIL and warnings alone still PASS.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..constants import MIN_FIELD_CHARS
from .models import (
    DraftPayload,
    SemanticValidationResult,
    Severity,
    ValidationIssue,
    ValidationReport,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

SECTION_TITLES = {
    "1": "Introduction",
    "2": "Overall Description",
    "3": "External Interface Requirements",
    "4": "System Features",
    "5": "Nonfunctional Requirements",
    "6": "Other Requirements",
}

# (section key, field key, section id, label) for fields that must be filled
REQUIRED_FIELDS = (
    ("introduction", "purpose", "1", "Purpose"),
    ("introduction", "scope", "1", "Product Scope"),
    ("overallDescription", "productPerspective", "2", "Product Perspective"),
    ("overallDescription", "productFunctions", "2", "Product Functions"),
    ("overallDescription", "userClasses", "2", "User Classes and Characteristics"),
)

# Fields that should be filled; empty ones only warn
RECOMMENDED_FIELDS = (
    ("overallDescription", "operatingEnvironment", "2", "Operating Environment"),
    ("overallDescription", "constraints", "2", "Design and Implementation Constraints"),
    ("nonFunctional", "performance", "5", "Performance Requirements"),
    ("nonFunctional", "security", "5", "Security Requirements"),
)


def parse_draft(draft: Union[DraftPayload, Mapping[str, Any]]) -> DraftPayload:
    """Validate a raw draft mapping into a DraftPayload.

    Raises:
        pydantic.ValidationError: the payload does not fit the draft shape.
    """
    if isinstance(draft, DraftPayload):
        return draft
    return DraftPayload.model_validate(draft or {})


def check_structure(draft: Union[DraftPayload, Mapping[str, Any]]) -> List[ValidationIssue]:
    """Structural checks only. Never calls out to a model."""
    try:
        payload = parse_draft(draft)
    except ValidationError as e:
        return [ValidationIssue(
            section="Draft",
            message=f"Draft payload is malformed: {e.error_count()} field error(s)",
            severity=Severity.CRITICAL,
        )]

    issues: List[ValidationIssue] = []

    for section_key, field_key, section_id, label in REQUIRED_FIELDS:
        content = getattr(getattr(payload, section_key), field_key).content.strip()
        section = SECTION_TITLES[section_id]
        if not content:
            issues.append(ValidationIssue(
                section=section,
                field=field_key,
                message=f"{label} is required.",
                severity=Severity.CRITICAL,
                suggested_fix=f"Describe the {label.lower()} of the product.",
            ))
        elif len(content) < MIN_FIELD_CHARS:
            issues.append(ValidationIssue(
                section=section,
                field=field_key,
                message=f"{label} is too short to be meaningful.",
                severity=Severity.WARNING,
                suggested_fix=f"Expand the {label.lower()} to at least {MIN_FIELD_CHARS} characters.",
            ))

    for section_key, field_key, section_id, label in RECOMMENDED_FIELDS:
        content = getattr(getattr(payload, section_key), field_key).content.strip()
        if not content:
            issues.append(ValidationIssue(
                section=SECTION_TITLES[section_id],
                field=field_key,
                message=f"{label} is empty.",
                severity=Severity.WARNING,
            ))

    features = payload.systemFeatures.features
    if not features:
        issues.append(ValidationIssue(
            section=SECTION_TITLES["4"],
            field="features",
            message="At least one system feature is required.",
            severity=Severity.CRITICAL,
        ))
    for idx, feature in enumerate(features, start=1):
        name = feature.name.strip() or f"Feature #{idx}"
        if not feature.name.strip():
            issues.append(ValidationIssue(
                section=SECTION_TITLES["4"],
                field="name",
                message=f"Feature #{idx} has no name.",
                severity=Severity.CRITICAL,
            ))
        if not feature.description.content.strip():
            issues.append(ValidationIssue(
                section=SECTION_TITLES["4"],
                field="description",
                message=f"{name} has no description.",
                severity=Severity.CRITICAL,
            ))
        if not feature.functionalRequirements.content.strip():
            issues.append(ValidationIssue(
                section=SECTION_TITLES["4"],
                field="functionalRequirements",
                message=f"{name} lists no functional requirements.",
                severity=Severity.CRITICAL,
            ))

    return issues


def semantic_issues(result: Union[SemanticValidationResult, Mapping[str, Any]]) -> List[ValidationIssue]:
    """Map drift-check output onto ValidationIssues.

    SEMANTIC_MISMATCH / HARD_CONFLICT is always a blocker; everything else
    keeps the severity the model assigned.
    """
    if not isinstance(result, SemanticValidationResult):
        result = SemanticValidationResult.model_validate(result or {})

    issues = []
    for item in result.issues:
        blocker = (
            item.severity == "BLOCKER"
            or item.issue_type == "SEMANTIC_MISMATCH"
            or item.conflict_type == "HARD_CONFLICT"
        )
        section_key = (item.section_id or item.subsection_id.split(".")[0]).strip()
        issues.append(ValidationIssue(
            section=SECTION_TITLES.get(section_key, section_key or "General"),
            field=item.subsection_id or None,
            message=f"{item.title}: {item.description}".strip(": ") or item.issue_type,
            severity=Severity.CRITICAL if blocker else Severity.WARNING,
            issue_type=item.issue_type,
            suggested_fix=item.suggested_fix or None,
        ))
    return issues


def semantic_status(issues: List[ValidationIssue]) -> str:
    return "FAIL" if any(i.severity == Severity.CRITICAL for i in issues) else "PASS"


def build_report(
    structural: List[ValidationIssue],
    semantic: Optional[List[ValidationIssue]] = None,
) -> ValidationReport:
    """Combine both layers into the overall VALIDATED / NEEDS_FIX verdict."""
    issues = list(structural) + list(semantic or [])
    status = (
        WorkflowStatus.NEEDS_FIX
        if any(i.severity == Severity.CRITICAL for i in issues)
        else WorkflowStatus.VALIDATED
    )
    return ValidationReport(
        status=status,
        issues=issues,
        semantic_status=semantic_status(semantic) if semantic is not None else None,
    )


def validate_draft(draft: Union[DraftPayload, Mapping[str, Any]]) -> ValidationReport:
    """Structural-only validation (no model call)."""
    return build_report(check_structure(draft))


def draft_to_text(draft: Union[DraftPayload, Mapping[str, Any]]) -> str:
    """Flatten a draft into the plain requirements text sent to inference."""
    payload = parse_draft(draft)
    lines: List[str] = []

    def emit_section(title: str, section: Any):
        body = []
        for key, value in section:
            content = getattr(value, "content", "")
            if isinstance(content, str) and content.strip():
                body.append(f"{key}: {content.strip()}")
        if body:
            lines.append(f"## {title}")
            lines.extend(body)

    emit_section(SECTION_TITLES["1"], payload.introduction)
    emit_section(SECTION_TITLES["2"], payload.overallDescription)
    emit_section(SECTION_TITLES["3"], payload.externalInterfaces)

    if payload.systemFeatures.features:
        lines.append(f"## {SECTION_TITLES['4']}")
        for feature in payload.systemFeatures.features:
            lines.append(f"### {feature.name or 'Unnamed feature'}")
            for key in ("description", "stimulusResponse", "functionalRequirements"):
                content = getattr(feature, key).content.strip()
                if content:
                    lines.append(f"{key}: {content}")
            if feature.rawInput:
                lines.append(f"notes: {feature.rawInput.strip()}")

    emit_section(SECTION_TITLES["5"], payload.nonFunctional)
    emit_section(SECTION_TITLES["6"], payload.other)
    return "\n".join(lines)
