"""Analysis Engine: public facade over the analysis lifecycle.

Provides the API consumed by the HTTP routes and the delivery worker.
Collaborators (inference, embedding, queue) are passed in; any of them
may be None, in which case the operations that need it fail or degrade
as documented on each method.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select

from ..config import LimitSettings
from ..db import Analysis, ChatMessage, DatabaseManager, Project
from ..embedding import EmbeddingService
from ..exceptions import ConflictError, InputError
from ..gateway import InferenceGateway
from ..queue import DeliveryQueue, JobMessage
from .diff import diff_versions
from .knowledge import KnowledgeService
from .models import (
    EDITABLE_WORKFLOW_STATES,
    JobStatus,
    Severity,
    Source,
    Trigger,
    ValidationIssue,
    WorkflowStatus,
)
from .prompts import PROMPT_VERSION, build_validation_prompt
from .reuse import SimilarityReuseEngine
from .revision import RevisionFlow
from .serializers import analysis_detail, analysis_summary, message_dict
from .state_machine import JobStateMachine, parse_id
from .validation import build_report, check_structure, draft_to_text, parse_draft, semantic_issues
from .versioning import VersionManager

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Orchestrate requirements analyses for the API and the worker.

    Public API:
        submit(owner_id, text|draft, settings, ...) -> {analysisId, status}
        process(message) -> None                       (delivery handler)
        job_status(analysis_id) -> {status}
        create_draft / update_draft / validate_draft / submit_draft
        chat / regenerate / manual_edit / generate_code / soft_cap_status
        finalize(analysis_id) -> {chunksStored}
        get_analysis / list_analyses / history / diff / messages
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        inference: Optional[InferenceGateway] = None,
        embedder: Optional[EmbeddingService] = None,
        queue: Optional[DeliveryQueue] = None,
        limits: Optional[LimitSettings] = None,
        inference_timeout: Optional[float] = None,
    ):
        limits = limits or LimitSettings()
        self._db = db_manager
        self._inference = inference
        self._embedder = embedder
        self._queue = queue

        self.versions = VersionManager(db_manager)
        self.reuse = SimilarityReuseEngine(db_manager, embedder)
        self.jobs = JobStateMachine(
            db_manager,
            self.versions,
            inference=inference,
            queue=queue,
            reuse=self.reuse,
            max_input_chars=limits.max_input_chars,
            inference_timeout=inference_timeout,
        )
        self.revisions = RevisionFlow(
            db_manager,
            self.versions,
            self.jobs,
            inference=inference,
            history_window=limits.chat_history_window,
            soft_cap=limits.soft_version_cap,
            enforce_soft_cap=limits.enforce_soft_cap,
            chat_timeout=inference_timeout,
        )
        self.knowledge = KnowledgeService(db_manager, self.versions, self.jobs, embedder)

    def set_queue(self, queue: DeliveryQueue) -> None:
        """Attach the delivery queue after construction (the local queue needs our handler first)."""
        self._queue = queue
        self.jobs.set_queue(queue)

    # ── Job lifecycle ───────────────────────────────────────────────────

    def submit(
        self,
        owner_id: Any,
        text: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        draft: Optional[Dict[str, Any]] = None,
        project_id: Optional[Any] = None,
        parent_id: Optional[Any] = None,
        root_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """Submit free text for analysis, or open a structured draft.

        Exactly one of ``text`` and ``draft`` must be given. Text is queued
        straight away; a draft is stored in DRAFT and must be validated and
        submitted before it is queued.
        """
        if (text is None) == (draft is None):
            raise InputError("Provide either text or draft")
        if settings is not None and not isinstance(settings, dict):
            raise InputError("settings must be an object")
        if draft is not None:
            return self.create_draft(owner_id, draft, settings=settings, project_id=project_id)
        return self.jobs.submit(
            owner_id, text, settings,
            parent_id=parent_id, root_id=root_id, project_id=project_id,
        )

    def process(self, message: JobMessage) -> None:
        self.jobs.process(message)

    def job_status(self, analysis_id: Any, owner_id: Optional[Any] = None) -> Dict[str, Any]:
        return self.jobs.status(analysis_id, owner_id)

    # ── Draft intake ────────────────────────────────────────────────────

    @staticmethod
    def _parse_draft(draft: Any):
        if not isinstance(draft, dict):
            raise InputError("Draft must be an object")
        try:
            return parse_draft(draft)
        except ValidationError as e:
            raise InputError(f"Draft payload is malformed: {e.error_count()} field error(s)") from e

    def create_draft(
        self,
        owner_id: Any,
        draft: Dict[str, Any],
        settings: Optional[Dict[str, Any]] = None,
        project_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """Store a structured draft as a new lineage root in DRAFT."""
        payload = self._parse_draft(draft)
        settings = self.jobs.normalize_settings(settings)
        owner = parse_id(owner_id)
        if owner is None:
            raise InputError("Invalid owner id")

        def create(session):
            fields = dict(
                user_id=owner,
                input_text=draft_to_text(payload),
                status=JobStatus.PENDING.value,
                workflow_status=WorkflowStatus.DRAFT.value,
                analysis_metadata={
                    "trigger": Trigger.INITIAL.value,
                    "source": Source.USER.value,
                    "promptSettings": settings,
                    "promptVersion": PROMPT_VERSION,
                    "draft": payload.to_json(),
                },
            )
            if project_id is not None:
                fields["project_id"] = self.jobs.owned_project(session, project_id, owner)
            return self.versions.create_root(session, **fields)

        record = self.versions.run_versioned(create)
        logger.info(f"Draft {record.analysis_id} created")
        return {
            "analysisId": str(record.analysis_id),
            "status": "draft",
            "workflowStatus": WorkflowStatus.DRAFT.value,
            "version": record.version,
            "rootId": str(record.root_id),
        }

    def _load_draft(self, session, analysis_id: Any, owner_id: Any) -> Analysis:
        record = self.jobs.load_owned(session, analysis_id, owner_id)
        metadata = record.analysis_metadata or {}
        if "draft" not in metadata or record.workflow_status is None:
            raise InputError(f"Analysis {analysis_id} is not a draft")
        if WorkflowStatus(record.workflow_status) not in EDITABLE_WORKFLOW_STATES:
            raise ConflictError(
                f"Draft {analysis_id} is {record.workflow_status} and can no longer change",
                workflowStatus=record.workflow_status,
            )
        return record

    def update_draft(self, analysis_id: Any, owner_id: Any, draft: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a draft in place. Any earlier validation is discarded."""
        payload = self._parse_draft(draft)
        with self._db.get_session() as session:
            record = self._load_draft(session, analysis_id, owner_id)
            metadata = dict(record.analysis_metadata or {})
            metadata["draft"] = payload.to_json()
            metadata.pop("validation", None)
            record.analysis_metadata = metadata
            record.input_text = draft_to_text(payload)
            record.workflow_status = WorkflowStatus.DRAFT.value
            record.updated_at = datetime.utcnow()
            return {"analysisId": str(record.analysis_id), "workflowStatus": record.workflow_status}

    def validate_draft(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        """Run the validation gate and record its verdict on the draft.

        The semantic layer needs the inference gateway; when it is missing
        or fails, the verdict is structural only plus a warning.
        """
        with self._db.get_session() as session:
            record = self._load_draft(session, analysis_id, owner_id)
            record.workflow_status = WorkflowStatus.VALIDATING.value
            draft = dict(record.analysis_metadata["draft"])
            aid = record.analysis_id

        try:
            structural = check_structure(draft)
            semantic = self._semantic_check(aid, draft)
            report = build_report(structural, semantic)
        except Exception:
            self._set_workflow(aid, WorkflowStatus.DRAFT)
            raise

        with self._db.get_session() as session:
            record = session.get(Analysis, aid)
            metadata = dict(record.analysis_metadata or {})
            metadata["validation"] = dict(report.to_dict(), validatedAt=datetime.utcnow().isoformat())
            record.analysis_metadata = metadata
            record.workflow_status = report.status.value

        logger.info(
            f"Draft {aid} validated: {report.status.value} "
            f"({len(report.issues)} issue(s), semantic={report.semantic_status})"
        )
        return dict(report.to_dict(), analysisId=str(aid))

    def _semantic_check(self, analysis_id, draft: Dict[str, Any]) -> List[ValidationIssue]:
        unavailable = ValidationIssue(
            section="General",
            message="Semantic consistency check unavailable; structural checks only.",
            severity=Severity.WARNING,
            issue_type="OTHER",
        )
        if self._inference is None:
            return [unavailable]
        try:
            raw = self._inference.infer(build_validation_prompt(draft), purpose="validation")
            return semantic_issues(raw)
        except Exception as e:
            logger.warning(f"Semantic validation for {analysis_id} failed, structural only: {e}")
            return [unavailable]

    def _set_workflow(self, analysis_id, status: WorkflowStatus) -> None:
        with self._db.get_session() as session:
            record = session.get(Analysis, analysis_id)
            if record is not None:
                record.workflow_status = status.value

    def submit_draft(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        """Queue a VALIDATED draft against its own record."""
        with self._db.get_session() as session:
            record = self._load_draft(session, analysis_id, owner_id)
            if record.workflow_status != WorkflowStatus.VALIDATED.value:
                raise ConflictError(
                    f"Draft {analysis_id} must be VALIDATED before submission",
                    workflowStatus=record.workflow_status,
                )
            text = self.jobs.normalize_text(draft_to_text(record.analysis_metadata["draft"]))
            record.input_text = text
            record.workflow_status = WorkflowStatus.COMPLETED.value
            aid = record.analysis_id

        return self.jobs.enqueue_existing(aid, owner_id, text)

    # ── Revisions ───────────────────────────────────────────────────────

    def chat(self, analysis_id: Any, owner_id: Any, message: str) -> Dict[str, Any]:
        return self.revisions.chat(analysis_id, owner_id, message)

    def regenerate(
        self,
        analysis_id: Any,
        owner_id: Any,
        improvement_notes: Optional[str] = None,
        affected_sections: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        return self.revisions.regenerate(analysis_id, owner_id, improvement_notes, affected_sections)

    def manual_edit(self, analysis_id: Any, owner_id: Any, result_json: Dict[str, Any]) -> Dict[str, Any]:
        return self.revisions.manual_edit(analysis_id, owner_id, result_json)

    def generate_code(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        return self.revisions.generate_code(analysis_id, owner_id)

    def soft_cap_status(self, root_id: Any, owner_id: Any) -> Dict[str, Any]:
        with self._db.get_session() as session:
            record = self.jobs.load_owned(session, root_id, owner_id)
            rid = record.root_id
        return self.revisions.soft_cap_status(rid)

    def finalize(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        return self.knowledge.finalize(analysis_id, owner_id)

    # ── Reads ───────────────────────────────────────────────────────────

    def get_analysis(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        with self._db.get_session() as session:
            return analysis_detail(self.jobs.load_owned(session, analysis_id, owner_id))

    def list_analyses(
        self,
        owner_id: Any,
        project_id: Optional[Any] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Newest first, with a short input preview instead of the full text."""
        query = (
            select(Analysis)
            .where(Analysis.user_id == parse_id(owner_id))
            .order_by(Analysis.created_at.desc())
            .offset(max(offset, 0))
            .limit(max(min(limit, 200), 1))
        )
        if project_id is not None:
            query = query.where(Analysis.project_id == parse_id(project_id))
        with self._db.get_session() as session:
            return [analysis_summary(r) for r in session.execute(query).scalars()]

    def history(self, root_id: Any, owner_id: Any) -> List[Dict[str, Any]]:
        """Every version of the lineage containing ``root_id``, newest first."""
        with self._db.get_session() as session:
            record = self.jobs.load_owned(session, root_id, owner_id)
            return [analysis_summary(r) for r in self.versions.lineage(session, record.root_id)]

    def diff(self, old_id: Any, new_id: Any, owner_id: Any) -> Dict[str, Any]:
        with self._db.get_session() as session:
            old = self.jobs.load_owned(session, old_id, owner_id)
            new = self.jobs.load_owned(session, new_id, owner_id)
            changes = diff_versions(old.input_text, old.result_json, new.input_text, new.result_json)
            return {
                "from": {"id": str(old.analysis_id), "version": old.version},
                "to": {"id": str(new.analysis_id), "version": new.version},
                "sameLineage": old.root_id == new.root_id,
                "changes": changes,
            }

    def messages(self, analysis_id: Any, owner_id: Any) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            record = self.jobs.load_owned(session, analysis_id, owner_id)
            rows = session.execute(
                select(ChatMessage)
                .where(ChatMessage.analysis_id == record.analysis_id)
                .order_by(ChatMessage.created_at)
            ).scalars()
            return [message_dict(m) for m in rows]

    # ── Projects ────────────────────────────────────────────────────────

    def create_project(self, owner_id: Any, name: str, description: Optional[str] = None) -> Dict[str, Any]:
        if not isinstance(name, str) or not name.strip():
            raise InputError("Project name is required")
        with self._db.get_session() as session:
            project = Project(user_id=parse_id(owner_id), name=name.strip()[:255], description=description)
            session.add(project)
            session.flush()
            return {"id": str(project.project_id), "name": project.name, "description": project.description}

    def list_projects(self, owner_id: Any) -> List[Dict[str, Any]]:
        with self._db.get_session() as session:
            rows = session.execute(
                select(Project)
                .where(Project.user_id == parse_id(owner_id))
                .order_by(Project.created_at.desc())
            ).scalars()
            return [{"id": str(p.project_id), "name": p.name, "description": p.description} for p in rows]

    # ── Operations ──────────────────────────────────────────────────────

    def get_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {
            "llm": self._inference.get_metrics() if self._inference else {},
        }
        if self._queue is not None and hasattr(self._queue, "delivered"):
            metrics["queue"] = {
                "delivered": self._queue.delivered,
                "deadLettered": self._queue.dead_lettered,
            }
        return metrics

    def shutdown(self) -> None:
        if self._inference is not None:
            self._inference.shutdown()
        if self._embedder is not None:
            self._embedder.shutdown()
