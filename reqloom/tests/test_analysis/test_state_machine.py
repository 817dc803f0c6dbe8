"""Unit tests for JobStateMachine: submit, process, status, transitions.

Tests cover:
- Persist-before-publish and publish failure handling
- Conditional PENDING -> terminal transitions
- Duplicate delivery no-op
- Inference failures ending in FAILED
- Ownership and input checks
"""

import uuid
from unittest.mock import MagicMock

import pytest

from reqloom.core.analysis.models import JobStatus, ReuseTier
from reqloom.core.analysis.state_machine import can_transition
from reqloom.core.db import Analysis
from reqloom.core.exceptions import AuthorizationError, InferenceTimeout, InputError, QueueError
from reqloom.core.queue import JobMessage


def _record(db_manager, analysis_id):
    with db_manager.get_session() as session:
        return session.get(Analysis, uuid.UUID(analysis_id))


def _snapshot(record):
    return {prop.key: getattr(record, prop.key) for prop in Analysis.__mapper__.column_attrs}


class TestTransitions:

    def test_only_pending_moves(self):
        assert can_transition(JobStatus.PENDING, JobStatus.COMPLETED)
        assert can_transition(JobStatus.PENDING, JobStatus.FAILED)
        assert not can_transition(JobStatus.COMPLETED, JobStatus.FAILED)
        assert not can_transition(JobStatus.FAILED, JobStatus.COMPLETED)
        assert not can_transition(JobStatus.COMPLETED, JobStatus.PENDING)


class TestSubmit:

    def test_persists_pending_then_publishes(self, engine, db_manager, owner_id, queue):
        def check_persisted(message):
            # The record must already exist when the job is published
            assert _record(db_manager, message.analysis_id).status == "PENDING"
            return "msg-1"
        queue.publish.side_effect = check_persisted

        result = engine.submit(owner_id, text="  Build a login page  ")

        assert result["status"] == "queued"
        assert result["version"] == 1
        message = queue.publish.call_args.args[0]
        assert message.analysis_id == result["analysisId"]
        assert message.text == "Build a login page"
        assert engine.job_status(result["analysisId"])["status"] == "PENDING"

    def test_root_record_shape(self, engine, db_manager, owner_id):
        result = engine.submit(owner_id, text="Build a login page", settings={"depth": 4})
        record = _record(db_manager, result["analysisId"])

        assert record.root_id == record.analysis_id
        assert record.parent_id is None
        assert record.result_json is None
        assert record.analysis_metadata["trigger"] == "initial"
        assert record.analysis_metadata["source"] == "user"
        assert record.analysis_metadata["promptSettings"] == {"depth": 4}

    def test_publish_failure_marks_failed(self, engine, db_manager, owner_id, queue):
        queue.publish.side_effect = QueueError("relay down")

        result = engine.submit(owner_id, text="Build a login page")

        assert result["status"] == "failed"
        record = _record(db_manager, result["analysisId"])
        assert record.status == "FAILED"
        assert "relay down" in record.error_message
        assert engine.job_status(result["analysisId"])["status"] == "FAILED"

    def test_no_queue_marks_failed(self, db_manager, owner_id, inference):
        from reqloom.core.analysis import AnalysisEngine
        engine = AnalysisEngine(db_manager, inference=inference)

        result = engine.submit(owner_id, text="Build a login page")

        assert result["status"] == "failed"

    @pytest.mark.parametrize("text", ["", "   ", None, 42])
    def test_rejects_empty_or_non_text(self, engine, owner_id, queue, text):
        with pytest.raises(InputError):
            engine.jobs.submit(owner_id, text)
        queue.publish.assert_not_called()

    def test_rejects_oversized_text(self, engine, owner_id, queue):
        engine.jobs.max_input_chars = 10
        with pytest.raises(InputError):
            engine.submit(owner_id, text="x" * 11)
        queue.publish.assert_not_called()

    @pytest.mark.parametrize("settings", [
        {"depth": None},
        {"depth": "high"},
        {"strictness": 9},
        {"timeout_seconds": 0},
        {"affectedSections": "4"},
    ])
    def test_rejects_bad_settings_before_persisting(self, engine, db_manager, owner_id, queue, settings):
        with pytest.raises(InputError):
            engine.submit(owner_id, text="Build a login page", settings=settings)
        queue.publish.assert_not_called()
        with db_manager.get_session() as session:
            assert session.query(Analysis).count() == 0

    def test_settings_are_coerced_and_extras_kept(self, engine, owner_id, queue):
        engine.submit(owner_id, text="Build a login page", settings={"depth": "2", "tone": "formal"})

        assert queue.publish.call_args.args[0].settings == {"depth": 2, "tone": "formal"}

    def test_bad_draft_settings_rejected(self, engine, owner_id, draft):
        with pytest.raises(InputError):
            engine.submit(owner_id, draft=draft, settings={"depth": 0})

    def test_foreign_parent_rejected(self, engine, owner_id, other_owner_id, completed, queue):
        queue.publish.reset_mock()
        with pytest.raises(AuthorizationError):
            engine.submit(other_owner_id, text="Steal it", parent_id=completed)
        queue.publish.assert_not_called()

    def test_root_id_appends_after_head(self, engine, owner_id, completed):
        result = engine.submit(owner_id, text="Build a login page v2", root_id=completed)

        assert result["version"] == 2
        assert result["rootId"] == completed
        assert result["parentId"] == completed

    def test_reuse_hint_stored(self, db_manager, owner_id, inference, queue):
        from reqloom.core.analysis import AnalysisEngine
        from reqloom.core.embedding import EmbeddingService
        model = MagicMock()
        model.get_text_embedding.return_value = [1.0, 0.0]
        engine = AnalysisEngine(
            db_manager, inference=inference, queue=queue,
            embedder=EmbeddingService(model, timeout_seconds=2),
        )
        prior = uuid.uuid4()
        with db_manager.get_session() as session:
            session.add(Analysis(
                analysis_id=prior, root_id=prior, user_id=uuid.UUID(owner_id), version=1,
                input_text="login", status="COMPLETED", result_json={"projectTitle": "Prior"},
                is_finalized=True, vector_signature=[1.0, 0.0], analysis_metadata={},
            ))

        result = engine.submit(owner_id, text="Build a login page")

        assert result["reuse"]["found"] is True
        assert result["reuse"]["tier"] == ReuseTier.EXACT.value
        record = _record(db_manager, result["analysisId"])
        assert record.analysis_metadata["reuse"]["matchId"] == str(prior)


class TestProcess:

    def test_login_page_scenario(self, engine, db_manager, owner_id, queue, llm, deliver):
        result = engine.submit(owner_id, text="Build a login page")
        assert engine.job_status(result["analysisId"])["status"] == "PENDING"

        deliver()

        record = _record(db_manager, result["analysisId"])
        assert record.status == "COMPLETED"
        assert record.title == "Login Page"
        assert record.completed_at is not None
        audit = record.result_json["qualityAudit"]
        assert audit["score"] == 95
        assert audit["issues"] == ['Ambiguity in FR #1: Avoid words like "fast". Be specific.']
        assert "Build a login page" in llm.prompts[0]

    def test_duplicate_delivery_is_noop(self, engine, db_manager, owner_id, queue, llm, deliver):
        result = engine.submit(owner_id, text="Build a login page")
        deliver()
        before = _snapshot(_record(db_manager, result["analysisId"]))

        deliver()

        assert llm.calls == 1
        assert _snapshot(_record(db_manager, result["analysisId"])) == before

    def test_duplicate_after_failure_is_noop(self, engine, db_manager, owner_id, queue, llm):
        queue.publish.side_effect = QueueError("down")
        result = engine.submit(owner_id, text="Build a login page")
        before = _snapshot(_record(db_manager, result["analysisId"]))

        engine.process(JobMessage(result["analysisId"], owner_id, "Build a login page"))

        assert llm.calls == 0
        assert _snapshot(_record(db_manager, result["analysisId"])) == before

    def test_unparseable_output_fails(self, db_manager, owner_id, queue, make_llm):
        from reqloom.core.analysis import AnalysisEngine
        from reqloom.core.gateway import InferenceGateway
        engine = AnalysisEngine(
            db_manager, inference=InferenceGateway(make_llm("not json at all")), queue=queue,
        )
        result = engine.submit(owner_id, text="Build a login page")

        engine.process(queue.publish.call_args.args[0])

        record = _record(db_manager, result["analysisId"])
        assert record.status == "FAILED"
        assert record.result_json is None
        assert "No JSON object" in record.error_message

    def test_malformed_structure_fails(self, db_manager, owner_id, queue, make_llm):
        from reqloom.core.analysis import AnalysisEngine
        from reqloom.core.gateway import InferenceGateway
        bad = {"systemFeatures": "not a list"}
        engine = AnalysisEngine(db_manager, inference=InferenceGateway(make_llm(bad)), queue=queue)
        result = engine.submit(owner_id, text="Build a login page")

        engine.process(queue.publish.call_args.args[0])

        assert _record(db_manager, result["analysisId"]).status == "FAILED"

    def test_timeout_fails(self, engine, db_manager, owner_id, queue, monkeypatch):
        result = engine.submit(owner_id, text="Build a login page")
        monkeypatch.setattr(
            engine.jobs._inference, "infer", MagicMock(side_effect=InferenceTimeout("too slow")),
        )

        engine.process(queue.publish.call_args.args[0])

        record = _record(db_manager, result["analysisId"])
        assert record.status == "FAILED"
        assert record.error_message == "too slow"

    def test_unknown_id_is_dropped(self, engine, owner_id, llm):
        engine.process(JobMessage(str(uuid.uuid4()), owner_id, "Build a login page"))
        assert llm.calls == 0

    def test_owner_mismatch_is_dropped(self, engine, db_manager, owner_id, other_owner_id, llm):
        result = engine.submit(owner_id, text="Build a login page")

        engine.process(JobMessage(result["analysisId"], other_owner_id, "Build a login page"))

        assert llm.calls == 0
        assert _record(db_manager, result["analysisId"]).status == "PENDING"

    def test_regeneration_prompt_includes_parent(self, engine, owner_id, queue, llm, completed):
        queue.publish.reset_mock()
        engine.regenerate(completed, owner_id, "Quantify the latency target")

        engine.process(queue.publish.call_args.args[0])

        prompt = llm.prompts[-1]
        assert "PREVIOUS VERSION" in prompt
        assert "Quantify the latency target" in prompt

    def test_regeneration_from_failed_record_keeps_notes(self, engine, owner_id, queue, llm):
        queue.publish.side_effect = [QueueError("relay down"), "msg-2"]
        failed = engine.submit(owner_id, text="Build a login page")["analysisId"]
        engine.regenerate(failed, owner_id, "Add audit logging", ["4"])

        engine.process(queue.publish.call_args.args[0])

        prompt = llm.prompts[-1]
        assert "Add audit logging" in prompt
        assert "Only revise these sections: 4." in prompt
        assert "PREVIOUS VERSION" not in prompt

    def test_pending_head_falls_back_to_completed_result(self, engine, owner_id, queue, llm, completed):
        engine.regenerate(completed, owner_id, "First pass")
        engine.regenerate(completed, owner_id, "Second pass")

        engine.process(queue.publish.call_args.args[0])

        prompt = llm.prompts[-1]
        assert "PREVIOUS VERSION" in prompt
        assert '"projectTitle": "Login Page"' in prompt
        assert "Second pass" in prompt


class TestStatus:

    def test_unknown_id(self, engine):
        assert engine.job_status(str(uuid.uuid4()))["status"] == "unknown"

    def test_malformed_id(self, engine):
        assert engine.job_status("not-a-uuid")["status"] == "unknown"

    def test_other_owner_sees_unknown(self, engine, owner_id, other_owner_id, completed):
        assert engine.job_status(completed, other_owner_id)["status"] == "unknown"
        assert engine.job_status(completed, owner_id)["status"] == "COMPLETED"
