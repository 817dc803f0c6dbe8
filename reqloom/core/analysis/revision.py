"""Revision flow: chat, manual edit, code generation and regeneration.

Chat, edit and code generation run synchronously and derive a COMPLETED
version directly (they never go through the queue). Regeneration goes back through
``JobStateMachine.submit`` with the lineage head as parent, so it gets a
PENDING record and a normal delivery.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..constants import CHAT_HISTORY_WINDOW, SOFT_VERSION_CAP
from ..db import Analysis, ChatMessage, DatabaseManager
from ..exceptions import ConflictError, InferenceError, InputError, ReqloomError
from ..gateway import InferenceGateway
from ..utils import extract_json
from .linter import apply_quality_audit
from .models import GeneratedCode, JobStatus, Source, StructuredResult, Trigger
from .prompts import build_chat_prompt, build_code_prompt
from .state_machine import JobStateMachine, parse_id
from .versioning import VersionManager

logger = logging.getLogger(__name__)

MAX_CHAT_MESSAGE_CHARS = 4000


class RevisionFlow:
    """Derive new versions from a completed analysis."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        versions: VersionManager,
        state_machine: JobStateMachine,
        inference: Optional[InferenceGateway] = None,
        history_window: int = CHAT_HISTORY_WINDOW,
        soft_cap: int = SOFT_VERSION_CAP,
        enforce_soft_cap: bool = False,
        chat_timeout: Optional[float] = None,
    ):
        self._db = db_manager
        self._versions = versions
        self._jobs = state_machine
        self._inference = inference
        self.history_window = history_window
        self.soft_cap = soft_cap
        self.enforce_soft_cap = enforce_soft_cap
        self.chat_timeout = chat_timeout

    # ── Helpers ─────────────────────────────────────────────────────────

    def _load_completed(self, session: Session, analysis_id: Any, owner_id: Any) -> Analysis:
        record = self._jobs.load_owned(session, analysis_id, owner_id)
        if record.status != JobStatus.COMPLETED.value:
            raise ConflictError(
                f"Analysis {analysis_id} is {record.status}; only completed versions can be revised",
                status=record.status,
            )
        return record

    def recent_messages(self, session: Session, root_id: Any) -> List[Dict[str, str]]:
        """Last ``history_window`` messages across the whole lineage, oldest first."""
        rows = session.execute(
            select(ChatMessage.role, ChatMessage.content)
            .join(Analysis, Analysis.analysis_id == ChatMessage.analysis_id)
            .where(Analysis.root_id == parse_id(root_id))
            .order_by(ChatMessage.created_at.desc())
            .limit(self.history_window)
        ).all()
        return [{"role": role, "content": content} for role, content in reversed(rows)]

    @staticmethod
    def _structured(result: Any) -> Dict[str, Any]:
        try:
            structured = StructuredResult.model_validate(result)
        except ValidationError as e:
            raise InputError(f"Result does not fit the analysis shape: {e.error_count()} field error(s)") from e
        return apply_quality_audit(structured.to_json())

    # ── chat ────────────────────────────────────────────────────────────

    def chat(self, analysis_id: Any, owner_id: Any, message: str) -> Dict[str, Any]:
        """One conversational turn.

        The user message and the reply are stored together with the new
        version (when the model returned one) in a single transaction.

        Returns:
            Dict with reply, newAnalysisId (or None) and version
        """
        if not isinstance(message, str) or not message.strip():
            raise InputError("Chat message is empty")
        if len(message) > MAX_CHAT_MESSAGE_CHARS:
            raise InputError(f"Chat message exceeds {MAX_CHAT_MESSAGE_CHARS} characters")
        if self._inference is None:
            raise ReqloomError("No inference gateway configured")
        message = message.strip()

        with self._db.get_session() as session:
            record = self._load_completed(session, analysis_id, owner_id)
            history = self.recent_messages(session, record.root_id)
            prompt = build_chat_prompt(record.result_json, history, message, record.input_text)
            parent_id = record.analysis_id

        raw = self._inference.complete_text(prompt, timeout=self.chat_timeout, purpose="chat")
        reply, updated = self._parse_chat_reply(raw)

        new_result = None
        if updated is not None:
            try:
                new_result = self._structured(updated)
            except InputError as e:
                logger.warning(f"Chat update for {parent_id} discarded: {e}")

        def persist(session: Session) -> Optional[Analysis]:
            parent = session.get(Analysis, parent_id)
            now = datetime.utcnow()
            session.add(ChatMessage(analysis_id=parent_id, role="user", content=message, created_at=now))
            session.add(ChatMessage(
                analysis_id=parent_id, role="assistant", content=reply,
                created_at=now + timedelta(microseconds=1),
            ))
            if new_result is None:
                session.flush()
                return None
            return self._versions.derive_new_version(
                session, parent, Trigger.CHAT,
                input_text=parent.input_text,
                result_json=new_result,
                status=JobStatus.COMPLETED.value,
                title=str(new_result.get("projectTitle") or f"Version {parent.version + 1}")[:255],
                completed_at=datetime.utcnow(),
                analysis_metadata={
                    "trigger": Trigger.CHAT.value,
                    "source": Source.AI.value,
                    "chatMessage": message,
                },
            )

        created = self._versions.run_versioned(persist)
        if created is not None:
            logger.info(f"Chat on {parent_id} produced v{created.version} ({created.analysis_id})")
        return {
            "reply": reply,
            "newAnalysisId": str(created.analysis_id) if created else None,
            "version": created.version if created else None,
        }

    @staticmethod
    def _parse_chat_reply(raw: str):
        """``(reply, updatedAnalysis | None)``; unparseable output is a plain reply."""
        try:
            data = extract_json(raw)
        except ValueError:
            return raw.strip(), None
        reply = data.get("reply")
        updated = data.get("updatedAnalysis")
        if not isinstance(reply, str) or not reply.strip():
            reply = "Analysis updated." if isinstance(updated, dict) else raw.strip()
        return reply, updated if isinstance(updated, dict) and updated else None

    # ── manual edit ─────────────────────────────────────────────────────

    def manual_edit(self, analysis_id: Any, owner_id: Any, result_json: Any) -> Dict[str, Any]:
        """Store a user-edited result as a new version, re-linted."""
        if not isinstance(result_json, dict) or not result_json:
            raise InputError("Edited result must be a non-empty object")
        new_result = self._structured(result_json)

        def persist(session: Session) -> Analysis:
            parent = self._load_completed(session, analysis_id, owner_id)
            return self._versions.derive_new_version(
                session, parent, Trigger.EDIT,
                input_text=parent.input_text,
                result_json=new_result,
                status=JobStatus.COMPLETED.value,
                title=str(new_result.get("projectTitle") or parent.title or f"Version {parent.version + 1}")[:255],
                completed_at=datetime.utcnow(),
                analysis_metadata={"trigger": Trigger.EDIT.value, "source": Source.USER.value},
            )

        created = self._versions.run_versioned(persist)
        return {
            "newAnalysisId": str(created.analysis_id),
            "version": created.version,
            "qualityAudit": new_result.get("qualityAudit"),
        }

    # ── code generation ─────────────────────────────────────────────────

    def generate_code(self, analysis_id: Any, owner_id: Any) -> Dict[str, Any]:
        """Generate starter code for a completed version.

        The code is stored on a new version (trigger ``edit``, source ``ai``)
        carrying the same result, so the completed record stays untouched.

        Raises:
            ConflictError: the record is not COMPLETED.
            InferenceError: provider failure or output that is not a code bundle.
        """
        if self._inference is None:
            raise ReqloomError("No inference gateway configured")

        with self._db.get_session() as session:
            record = self._load_completed(session, analysis_id, owner_id)
            prompt = build_code_prompt(record.result_json)
            parent_id = record.analysis_id

        raw = self._inference.infer(prompt, timeout=self.chat_timeout, purpose="code")
        try:
            bundle = GeneratedCode.model_validate(raw)
        except ValidationError as e:
            raise InferenceError(
                f"Generated code has an unexpected shape: {e.error_count()} field error(s)",
            ) from e
        generated = bundle.to_json()

        def persist(session: Session) -> Analysis:
            parent = session.get(Analysis, parent_id)
            return self._versions.derive_new_version(
                session, parent, Trigger.EDIT,
                input_text=parent.input_text,
                result_json=parent.result_json,
                generated_code=generated,
                status=JobStatus.COMPLETED.value,
                title=parent.title,
                completed_at=datetime.utcnow(),
                analysis_metadata={
                    "trigger": Trigger.EDIT.value,
                    "source": Source.AI.value,
                    "artifact": "generatedCode",
                },
            )

        created = self._versions.run_versioned(persist)
        logger.info(
            f"Generated code for {parent_id} as v{created.version} "
            f"({bundle.file_count} file(s))"
        )
        return {
            "newAnalysisId": str(created.analysis_id),
            "version": created.version,
            "generatedCode": generated,
        }

    # ── regenerate ──────────────────────────────────────────────────────

    def soft_cap_status(self, root_id: Any) -> Dict[str, Any]:
        """Advisory regeneration count for a lineage. Never raises."""
        rid = parse_id(root_id)
        status = {
            "rootId": str(root_id),
            "versions": 0,
            "regenerations": 0,
            "softCap": self.soft_cap,
            "exceeded": False,
        }
        if rid is None:
            return status
        try:
            with self._db.get_session() as session:
                rows = self._versions.lineage(session, rid)
                status["versions"] = len(rows)
                status["regenerations"] = sum(
                    1 for r in rows
                    if (r.analysis_metadata or {}).get("trigger") == Trigger.REGENERATE.value
                )
        except Exception as e:
            logger.warning(f"Soft cap lookup failed for {root_id}: {e}")
            return status
        status["exceeded"] = status["regenerations"] >= self.soft_cap
        return status

    def regenerate(
        self,
        analysis_id: Any,
        owner_id: Any,
        improvement_notes: Optional[str] = None,
        affected_sections: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Queue a regeneration of the lineage with improvement notes."""
        if improvement_notes is not None and not isinstance(improvement_notes, str):
            raise InputError("improvementNotes must be a string")
        if affected_sections is not None and (
            not isinstance(affected_sections, list)
            or not all(isinstance(s, str) for s in affected_sections)
        ):
            raise InputError("affectedSections must be a list of strings")

        with self._db.get_session() as session:
            record = self._jobs.load_owned(session, analysis_id, owner_id)
            if record.status == JobStatus.PENDING.value:
                raise ConflictError(f"Analysis {analysis_id} is still pending")
            root_id = record.root_id
            input_text = record.input_text
            settings = dict((record.analysis_metadata or {}).get("promptSettings") or {})

        cap = self.soft_cap_status(root_id)
        if cap["exceeded"]:
            if self.enforce_soft_cap:
                raise ConflictError(
                    f"Lineage {root_id} reached the regeneration cap ({self.soft_cap})",
                    regenerations=cap["regenerations"],
                )
            logger.info(f"Lineage {root_id} is past the advisory regeneration cap ({cap['regenerations']})")

        settings["improvementNotes"] = (improvement_notes or "").strip() or None
        settings["affectedSections"] = affected_sections or []

        submitted = self._jobs.submit(
            owner_id, input_text, settings,
            root_id=root_id, trigger=Trigger.REGENERATE,
        )
        return {
            "newAnalysisId": submitted["analysisId"],
            "status": submitted["status"],
            "version": submitted["version"],
            "parentId": submitted["parentId"],
            "softCap": cap,
        }
