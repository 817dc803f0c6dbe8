"""Job state machine for queued analyses.

PENDING -> COMPLETED or PENDING -> FAILED. Nothing else; terminal rows
are never written again. Every transition is a conditional UPDATE on
``status = 'PENDING'`` so a duplicate or late delivery cannot overwrite
a terminal record.

submit():  validate -> persist PENDING -> reuse hint (best effort) -> publish
process(): load -> skip if terminal -> infer -> validate -> lint -> COMPLETED
           any failure along the way -> FAILED (retry belongs to the queue)
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..constants import MAX_INPUT_CHARS
from ..db import Analysis, DatabaseManager, Project
from ..exceptions import AuthorizationError, InputError, NotFoundError, ReqloomError
from ..gateway import InferenceGateway
from ..queue import DeliveryQueue, JobMessage
from .linter import apply_quality_audit
from .models import (
    JobStatus, PromptSettings, ReuseHint, ReuseTier, Source, StructuredResult, Trigger,
)
from .prompts import PROMPT_VERSION, build_analysis_prompt
from .reuse import SimilarityReuseEngine
from .versioning import VersionManager

logger = logging.getLogger(__name__)

LEGAL_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in LEGAL_TRANSITIONS[JobStatus(current)]


def parse_id(value: Any) -> Optional[uuid.UUID]:
    """UUID from str/UUID, or None when it is not a valid id."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def same_owner(record: Analysis, owner_id: Any) -> bool:
    return record.user_id == parse_id(owner_id)


class JobStateMachine:
    """Own the PENDING -> terminal lifecycle of queued analyses."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        versions: VersionManager,
        inference: Optional[InferenceGateway] = None,
        queue: Optional[DeliveryQueue] = None,
        reuse: Optional[SimilarityReuseEngine] = None,
        max_input_chars: int = MAX_INPUT_CHARS,
        inference_timeout: Optional[float] = None,
    ):
        self._db = db_manager
        self._versions = versions
        self._inference = inference
        self._queue = queue
        self._reuse = reuse
        self.max_input_chars = max_input_chars
        self.inference_timeout = inference_timeout

    def set_queue(self, queue: DeliveryQueue) -> None:
        self._queue = queue

    # ── Input checks ────────────────────────────────────────────────────

    def normalize_text(self, text: Any) -> str:
        """Strip and bound request text.

        Raises:
            InputError: not a string, empty, or longer than the limit.
        """
        if not isinstance(text, str):
            raise InputError("Requirements text must be a string")
        normalized = text.replace("\r\n", "\n").strip()
        if not normalized:
            raise InputError("Requirements text is empty")
        if len(normalized) > self.max_input_chars:
            raise InputError(
                f"Requirements text exceeds {self.max_input_chars} characters",
                length=len(normalized),
            )
        return normalized

    def normalize_settings(self, settings: Any) -> Dict[str, Any]:
        """Validate prompt settings before anything is persisted or queued.

        Raises:
            InputError: not an object, or a field of the wrong type or range.
        """
        if settings is None:
            return {}
        if not isinstance(settings, dict):
            raise InputError("settings must be an object")
        try:
            return PromptSettings.model_validate(settings).to_json()
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InputError(
                f"Invalid settings: {', '.join(fields)}",
                fields=fields,
            ) from e

    def load_owned(self, session: Session, analysis_id: Any, owner_id: Any) -> Analysis:
        aid = parse_id(analysis_id)
        record = session.get(Analysis, aid) if aid else None
        if record is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")
        if not same_owner(record, owner_id):
            raise AuthorizationError("Analysis belongs to another user")
        return record

    def owned_project(self, session: Session, project_id: Any, owner_id: Any) -> uuid.UUID:
        pid = parse_id(project_id)
        project = session.get(Project, pid) if pid else None
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.user_id != parse_id(owner_id):
            raise AuthorizationError("Project belongs to another user")
        return project.project_id

    # ── submit ──────────────────────────────────────────────────────────

    def submit(
        self,
        owner_id: Any,
        text: str,
        settings: Optional[Dict[str, Any]] = None,
        parent_id: Optional[Any] = None,
        root_id: Optional[Any] = None,
        project_id: Optional[Any] = None,
        trigger: Trigger = Trigger.INITIAL,
    ) -> Dict[str, Any]:
        """Persist a PENDING record, then publish its job.

        Without parent/root the record starts a new lineage. With ``root_id``
        only, the parent is the lineage head. Publish failures do not
        raise: the record is marked FAILED and ``status`` says so.

        Returns:
            Dict with analysisId, status ("queued" | "failed"), version, rootId
        """
        text = self.normalize_text(text)
        settings = self.normalize_settings(settings)
        owner = parse_id(owner_id)
        if owner is None:
            raise InputError("Invalid owner id")

        source = Source.USER if trigger == Trigger.INITIAL else Source.AI
        metadata = {
            "trigger": trigger.value,
            "source": source.value,
            "promptSettings": settings,
            "promptVersion": PROMPT_VERSION,
        }

        def create(session: Session) -> Analysis:
            parent = None
            if parent_id is not None:
                parent = self.load_owned(session, parent_id, owner)
                if root_id is not None and parse_id(root_id) != parent.root_id:
                    raise InputError("parentId does not belong to rootId lineage")
            elif root_id is not None:
                root = self.load_owned(session, root_id, owner)
                parent = self._versions.head(session, root.root_id)

            fields = dict(
                user_id=owner,
                input_text=text,
                status=JobStatus.PENDING.value,
                analysis_metadata=dict(metadata),
            )
            if parent is None:
                if project_id is not None:
                    fields["project_id"] = self.owned_project(session, project_id, owner)
                return self._versions.create_root(session, **fields)
            return self._versions.derive_new_version(session, parent, trigger, **fields)

        record = self._versions.run_versioned(create)
        logger.info(
            f"Analysis {record.analysis_id} PENDING "
            f"(root={record.root_id}, v{record.version}, trigger={trigger.value})"
        )

        hint = self._reuse_hint(record, text)
        published = self._publish(record, text, settings)
        return {
            "analysisId": str(record.analysis_id),
            "status": "queued" if published else "failed",
            "version": record.version,
            "rootId": str(record.root_id),
            "parentId": str(record.parent_id) if record.parent_id else None,
            "reuse": hint.to_dict(),
        }

    def enqueue_existing(self, analysis_id: Any, owner_id: Any, text: str) -> Dict[str, Any]:
        """Publish a job for a record that already exists in PENDING (drafts)."""
        text = self.normalize_text(text)
        with self._db.get_session() as session:
            record = self.load_owned(session, analysis_id, owner_id)
            if record.status != JobStatus.PENDING.value:
                raise InputError(f"Analysis {analysis_id} is not pending")
            settings = dict((record.analysis_metadata or {}).get("promptSettings") or {})

        hint = self._reuse_hint(record, text)
        published = self._publish(record, text, settings)
        return {
            "analysisId": str(record.analysis_id),
            "status": "queued" if published else "failed",
            "version": record.version,
            "rootId": str(record.root_id),
            "reuse": hint.to_dict(),
        }

    def _reuse_hint(self, record: Analysis, text: str) -> ReuseHint:
        if self._reuse is None:
            return ReuseHint(found=False)
        hint = self._reuse.lookup(text, owner_id=record.user_id, exclude_root=record.root_id)
        try:
            with self._db.get_session() as session:
                row = session.get(Analysis, record.analysis_id)
                metadata = dict(row.analysis_metadata or {})
                metadata["reuse"] = hint.to_dict()
                row.analysis_metadata = metadata
        except Exception as e:
            logger.warning(f"Could not store reuse hint for {record.analysis_id}: {e}")
        return hint

    def _publish(self, record: Analysis, text: str, settings: Dict[str, Any]) -> bool:
        message = JobMessage(
            analysis_id=str(record.analysis_id),
            owner_id=str(record.user_id),
            text=text,
            settings=settings,
            parent_id=str(record.parent_id) if record.parent_id else None,
            root_id=str(record.root_id),
        )
        try:
            if self._queue is None:
                raise ReqloomError("No delivery queue configured")
            self._queue.publish(message)
        except Exception as e:
            logger.error(f"Publish failed for analysis {record.analysis_id}: {e}")
            self.fail(record.analysis_id, f"Queue publish failed: {e}")
            return False
        logger.info(f"Analysis {record.analysis_id} queued")
        return True

    # ── process ─────────────────────────────────────────────────────────

    def process(self, message: JobMessage) -> None:
        """Handle one delivered job. Safe to call more than once per id."""
        aid = parse_id(message.analysis_id)
        with self._db.get_session() as session:
            record = session.get(Analysis, aid) if aid else None
            if record is None:
                logger.warning(f"Delivery for unknown analysis {message.analysis_id}, dropping")
                return
            if JobStatus(record.status).is_terminal:
                logger.info(
                    f"Duplicate delivery for analysis {aid} already {record.status}, skipping"
                )
                return
            if not same_owner(record, message.owner_id):
                logger.error(f"Delivery owner mismatch for analysis {aid}, dropping")
                return
            metadata = dict(record.analysis_metadata or {})
            regenerate = metadata.get("trigger") == Trigger.REGENERATE.value
            parent_result = self._previous_result(session, record) if regenerate else None
            version = record.version

        try:
            result_json = self._run_inference(message, metadata, parent_result, regenerate)
        except Exception as e:
            logger.error(f"Inference for analysis {aid} failed: {e}")
            self.fail(aid, str(e) or type(e).__name__)
            return

        title = result_json.get("projectTitle") or f"Version {version}"
        try:
            applied = self._transition(aid, JobStatus.COMPLETED, {
                Analysis.result_json: result_json,
                Analysis.title: str(title)[:255],
                Analysis.error_message: None,
                Analysis.completed_at: datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"Persisting result for analysis {aid} failed: {e}", exc_info=True)
            self.fail(aid, f"Persistence error: {e}", reraise=True)
            return

        if applied:
            score = result_json.get("qualityAudit", {}).get("score")
            logger.info(f"Analysis {aid} COMPLETED (quality score={score})")
        else:
            logger.info(f"Analysis {aid} reached a terminal state concurrently, result discarded")

    def _previous_result(self, session: Session, record: Analysis) -> Optional[Dict[str, Any]]:
        """Result a regeneration builds on: the parent's, else the newest completed version."""
        if record.parent_id:
            parent = session.get(Analysis, record.parent_id)
            if parent is not None and parent.result_json:
                return parent.result_json
        for version in self._versions.lineage(session, record.root_id):
            if version.status == JobStatus.COMPLETED.value and version.result_json:
                return version.result_json
        return None

    def _run_inference(
        self,
        message: JobMessage,
        metadata: Dict[str, Any],
        parent_result: Optional[Dict[str, Any]],
        regenerate: bool = False,
    ) -> Dict[str, Any]:
        if self._inference is None:
            raise ReqloomError("No inference gateway configured")

        reuse_context = None
        if self._reuse is not None and metadata.get("reuse"):
            stored = metadata["reuse"]
            reuse_context = self._reuse.load_context(ReuseHint(
                found=bool(stored.get("found")),
                tier=_tier_or_none(stored.get("tier")),
                similarity=stored.get("similarity"),
                match_id=stored.get("matchId"),
            ))

        prompt = build_analysis_prompt(
            message.text,
            settings=message.settings,
            reuse_context=reuse_context,
            parent_result=parent_result,
            regenerate=regenerate,
        )
        raw = self._inference.infer(
            prompt, message.settings, timeout=self.inference_timeout, purpose="analysis",
        )
        try:
            structured = StructuredResult.model_validate(raw)
        except ValidationError as e:
            raise ReqloomError(f"Malformed structured result: {e.error_count()} field error(s)") from e
        return apply_quality_audit(structured.to_json())

    # ── Transitions ─────────────────────────────────────────────────────

    def _transition(
        self,
        analysis_id: uuid.UUID,
        target: JobStatus,
        values: Dict[Any, Any],
    ) -> bool:
        """Conditionally move a PENDING record to ``target``.

        Returns:
            True if this call performed the transition, False if the record
            was no longer PENDING.
        """
        if not can_transition(JobStatus.PENDING, target):
            raise ValueError(f"Illegal transition PENDING -> {target.value}")
        values = dict(values)
        values[Analysis.status] = target.value
        values[Analysis.updated_at] = datetime.utcnow()

        with self._db.get_session() as session:
            result = session.execute(
                update(Analysis)
                .where(
                    Analysis.analysis_id == analysis_id,
                    Analysis.status == JobStatus.PENDING.value,
                )
                .values(values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def fail(self, analysis_id: Any, error: str, reraise: bool = False) -> bool:
        """Mark a PENDING record FAILED.

        A failure to write FAILED is re-raised when ``reraise`` is set so the
        delivery queue retries the job.
        """
        aid = parse_id(analysis_id)
        try:
            applied = self._transition(aid, JobStatus.FAILED, {
                Analysis.error_message: error[:2000],
                Analysis.completed_at: datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"Could not mark analysis {aid} FAILED: {e}", exc_info=True)
            if reraise:
                raise
            return False
        if applied:
            logger.info(f"Analysis {aid} FAILED: {error[:200]}")
        return applied

    # ── status ──────────────────────────────────────────────────────────

    def status(self, analysis_id: Any, owner_id: Optional[Any] = None) -> Dict[str, Any]:
        """Pure read. Unknown ids (and other users' ids) report ``unknown``."""
        aid = parse_id(analysis_id)
        unknown = {"analysisId": str(analysis_id), "status": "unknown"}
        if aid is None:
            return unknown
        with self._db.get_session() as session:
            record = session.get(Analysis, aid)
            if record is None or (owner_id is not None and not same_owner(record, owner_id)):
                return unknown
            return {
                "analysisId": str(record.analysis_id),
                "status": record.status,
                "workflowStatus": record.workflow_status,
                "version": record.version,
                "rootId": str(record.root_id),
                "error": record.error_message,
            }


def _tier_or_none(value) -> Optional[ReuseTier]:
    try:
        return ReuseTier(value) if value else None
    except ValueError:
        return None
