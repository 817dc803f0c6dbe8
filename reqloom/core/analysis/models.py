"""Data contracts for the analysis orchestrator.

Enums and dataclasses move between layers; the pydantic models validate
payloads at the boundary where they enter the system (model output and
draft intake). Unknown extra fields are kept, not rejected.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Lifecycle enums
# =============================================================================

class JobStatus(str, Enum):
    """Job lifecycle of one Analysis record."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PENDING


class WorkflowStatus(str, Enum):
    """Pre-inference intake state of a draft."""
    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    VALIDATED = "VALIDATED"
    NEEDS_FIX = "NEEDS_FIX"
    COMPLETED = "COMPLETED"


# Drafts can be edited in place only while in one of these states.
# VALIDATING stays editable so a validation cut short by a crash never
# strands the draft.
EDITABLE_WORKFLOW_STATES = frozenset({
    WorkflowStatus.DRAFT, WorkflowStatus.VALIDATING,
    WorkflowStatus.VALIDATED, WorkflowStatus.NEEDS_FIX,
})


class Trigger(str, Enum):
    """What created a version."""
    INITIAL = "initial"
    CHAT = "chat"
    EDIT = "edit"
    REGENERATE = "regenerate"


class Source(str, Enum):
    USER = "user"
    AI = "ai"


class ReuseTier(str, Enum):
    EXACT = "EXACT"        # treat as reuse candidate
    HIGH = "HIGH"          # use as reference context
    PARTIAL = "PARTIAL"    # use as background context
    LOW = "LOW"            # log only


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


# =============================================================================
# Transport dataclasses
# =============================================================================

@dataclass
class ReuseHint:
    """Advisory reuse classification attached to a job."""
    found: bool
    tier: Optional[ReuseTier] = None
    similarity: Optional[float] = None
    match_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "tier": self.tier.value if self.tier else None,
            "similarity": round(self.similarity, 4) if self.similarity is not None else None,
            "matchId": self.match_id,
        }


@dataclass
class LintReport:
    score: int
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "issues": list(self.issues)}


@dataclass
class ValidationIssue:
    """One finding of the draft validation gate."""
    section: str
    message: str
    severity: Severity
    field: Optional[str] = None
    issue_type: str = "INCOMPLETE"
    suggested_fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "issueType": self.issue_type,
            "suggestedFix": self.suggested_fix,
        }


@dataclass
class ValidationReport:
    status: WorkflowStatus
    issues: List[ValidationIssue] = field(default_factory=list)
    semantic_status: Optional[str] = None     # PASS | FAIL | None when not run

    @property
    def has_critical(self) -> bool:
        return any(i.severity == Severity.CRITICAL for i in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "semanticStatus": self.semantic_status,
            "issues": [i.to_dict() for i in self.issues],
        }


# =============================================================================
# Boundary models (pydantic)
# =============================================================================

class PromptSettings(BaseModel):
    """Caller-tunable prompt settings carried on every job message."""
    model_config = ConfigDict(extra="allow")

    profile: str = "default"
    depth: int = Field(3, ge=1, le=5)
    strictness: int = Field(3, ge=1, le=5)
    timeout_seconds: Optional[float] = Field(None, gt=0)
    improvementNotes: Optional[str] = None
    affectedSections: Optional[List[str]] = None

    def to_json(self) -> Dict[str, Any]:
        # Only what the caller set, so stored settings round-trip unchanged
        return self.model_dump(mode="json", exclude_unset=True)


class UserStory(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    feature: Optional[str] = None
    benefit: Optional[str] = None
    story: Optional[str] = None


class AcceptanceCriteria(BaseModel):
    model_config = ConfigDict(extra="allow")

    story: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)


class SystemFeature(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    description: Optional[str] = None
    functionalRequirements: List[str] = Field(default_factory=list)


class StructuredResult(BaseModel):
    """Structured specification returned by inference.

    Only the fields the orchestrator reasons about are typed; everything
    else the model returns is preserved as extra.
    """
    model_config = ConfigDict(extra="allow")

    projectTitle: Optional[str] = None
    functionalRequirements: List[str] = Field(default_factory=list)
    nonFunctionalRequirements: Union[List[str], Dict[str, List[str]]] = Field(default_factory=list)
    systemFeatures: List[SystemFeature] = Field(default_factory=list)
    userStories: List[UserStory] = Field(default_factory=list)
    acceptanceCriteria: Optional[List[AcceptanceCriteria]] = None
    qualityAudit: Optional[Dict[str, Any]] = None

    @field_validator("functionalRequirements", mode="before")
    @classmethod
    def _coerce_requirements(cls, value):
        if value is None:
            return []
        if isinstance(value, list):
            return [
                v.get("description") or v.get("text") or str(v) if isinstance(v, dict) else str(v)
                for v in value
            ]
        return value

    @field_validator("nonFunctionalRequirements", mode="before")
    @classmethod
    def _coerce_nfrs(cls, value):
        if value is None:
            return []
        if isinstance(value, dict):
            return {
                str(k): ([str(x) for x in v] if isinstance(v, list) else [str(v)])
                for k, v in value.items() if v
            }
        return value

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class CodeFile(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: str
    code: str = ""


class GeneratedCode(BaseModel):
    """Starter project produced from a completed analysis."""
    model_config = ConfigDict(extra="allow")

    explanation: str = ""
    fileStructure: List[Dict[str, Any]] = Field(default_factory=list)
    databaseSchema: Optional[str] = None
    backendRoutes: List[CodeFile] = Field(default_factory=list)
    frontendComponents: List[CodeFile] = Field(default_factory=list)
    testCases: List[CodeFile] = Field(default_factory=list)
    backendReadme: Optional[str] = None
    frontendReadme: Optional[str] = None

    @property
    def file_count(self) -> int:
        return len(self.backendRoutes) + len(self.frontendComponents) + len(self.testCases)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DraftField(BaseModel):
    """Intake field: plain text or ``{content, metadata}``."""
    model_config = ConfigDict(extra="allow")

    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _coerce_field(value):
    if value is None:
        return {"content": ""}
    if isinstance(value, str):
        return {"content": value}
    return value


class _DraftSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _coerce_field(value)


class IntroductionSection(_DraftSection):
    purpose: DraftField = Field(default_factory=DraftField)
    scope: DraftField = Field(default_factory=DraftField)
    definitions: DraftField = Field(default_factory=DraftField)
    references: DraftField = Field(default_factory=DraftField)
    overview: DraftField = Field(default_factory=DraftField)


class OverallDescriptionSection(_DraftSection):
    productPerspective: DraftField = Field(default_factory=DraftField)
    productFunctions: DraftField = Field(default_factory=DraftField)
    userClasses: DraftField = Field(default_factory=DraftField)
    operatingEnvironment: DraftField = Field(default_factory=DraftField)
    constraints: DraftField = Field(default_factory=DraftField)
    userDocumentation: DraftField = Field(default_factory=DraftField)
    assumptionsDependencies: DraftField = Field(default_factory=DraftField)


class ExternalInterfacesSection(_DraftSection):
    userInterfaces: DraftField = Field(default_factory=DraftField)
    hardwareInterfaces: DraftField = Field(default_factory=DraftField)
    softwareInterfaces: DraftField = Field(default_factory=DraftField)
    communicationInterfaces: DraftField = Field(default_factory=DraftField)


class DraftFeature(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: str = ""
    description: DraftField = Field(default_factory=DraftField)
    stimulusResponse: DraftField = Field(default_factory=DraftField)
    functionalRequirements: DraftField = Field(default_factory=DraftField)
    rawInput: Optional[str] = None

    @field_validator("description", "stimulusResponse", "functionalRequirements", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _coerce_field(value)


class SystemFeaturesSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    features: List[DraftFeature] = Field(default_factory=list)


class NonFunctionalSection(_DraftSection):
    performance: DraftField = Field(default_factory=DraftField)
    safety: DraftField = Field(default_factory=DraftField)
    security: DraftField = Field(default_factory=DraftField)
    quality: DraftField = Field(default_factory=DraftField)
    businessRules: DraftField = Field(default_factory=DraftField)


class OtherSection(_DraftSection):
    appendix: DraftField = Field(default_factory=DraftField)


class DraftPayload(BaseModel):
    """Structured pre-inference intake (IEEE-830 style sections)."""
    model_config = ConfigDict(extra="allow")

    introduction: IntroductionSection = Field(default_factory=IntroductionSection)
    overallDescription: OverallDescriptionSection = Field(default_factory=OverallDescriptionSection)
    externalInterfaces: ExternalInterfacesSection = Field(default_factory=ExternalInterfacesSection)
    systemFeatures: SystemFeaturesSection = Field(default_factory=SystemFeaturesSection)
    nonFunctional: NonFunctionalSection = Field(default_factory=NonFunctionalSection)
    other: OtherSection = Field(default_factory=OtherSection)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


_SEMANTIC_DEFAULTS = {"issue_type": "OTHER", "conflict_type": "NONE", "severity": "WARNING"}


class SemanticIssue(BaseModel):
    """One finding of the model-driven drift check."""
    model_config = ConfigDict(extra="allow")

    section_id: str = ""
    subsection_id: str = ""
    title: str = ""
    issue_type: str = "OTHER"          # SEMANTIC_MISMATCH|SCOPE_CREEP|AMBIGUITY|INCOMPLETE|OTHER
    conflict_type: str = "NONE"        # HARD_CONFLICT|SOFT_DRIFT|NONE
    severity: str = "WARNING"          # BLOCKER|WARNING
    description: str = ""
    suggested_fix: str = ""

    @field_validator("issue_type", "conflict_type", "severity", mode="before")
    @classmethod
    def _upper(cls, value, info):
        if not value:
            return _SEMANTIC_DEFAULTS[info.field_name]
        return str(value).upper()


class SemanticValidationResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    validation_status: str = "PASS"
    issues: List[SemanticIssue] = Field(default_factory=list)
