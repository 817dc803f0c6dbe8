"""Analysis lifecycle: submission, processing, revisions and finalization.

Main entry point is ``AnalysisEngine``; the pure pieces (``lint``,
``validate_draft``, ``classify_similarity``, ``diff_versions``) can be
used on their own.
"""

from .diff import diff_versions
from .engine import AnalysisEngine
from .linter import apply_quality_audit, lint
from .models import JobStatus, ReuseTier, Trigger, WorkflowStatus
from .reuse import classify_similarity
from .state_machine import JobStateMachine
from .validation import validate_draft
from .versioning import VersionManager

__all__ = [
    "AnalysisEngine",
    "JobStateMachine",
    "JobStatus",
    "ReuseTier",
    "Trigger",
    "VersionManager",
    "WorkflowStatus",
    "apply_quality_audit",
    "classify_similarity",
    "diff_versions",
    "lint",
    "validate_draft",
]
