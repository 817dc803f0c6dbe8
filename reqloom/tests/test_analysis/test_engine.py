"""Unit tests for the AnalysisEngine facade: drafts, reads and projects."""

import uuid

import pytest

from reqloom.core.analysis import AnalysisEngine
from reqloom.core.exceptions import AuthorizationError, ConflictError, InputError, NotFoundError


class TestSubmitArguments:

    def test_text_or_draft_required(self, engine, owner_id, draft):
        with pytest.raises(InputError):
            engine.submit(owner_id)
        with pytest.raises(InputError):
            engine.submit(owner_id, text="Build a login page", draft=draft)

    def test_settings_must_be_object(self, engine, owner_id):
        with pytest.raises(InputError):
            engine.submit(owner_id, text="Build a login page", settings=["depth"])


class TestDraftFlow:

    def test_create_validate_submit(self, engine, owner_id, queue, draft, deliver):
        created = engine.submit(owner_id, draft=draft)
        assert created["status"] == "draft"
        queue.publish.assert_not_called()

        report = engine.validate_draft(created["analysisId"], owner_id)
        assert report["status"] == "VALIDATED"
        assert report["semanticStatus"] == "PASS"

        submitted = engine.submit_draft(created["analysisId"], owner_id)
        assert submitted["status"] == "queued"
        assert submitted["analysisId"] == created["analysisId"]
        message = queue.publish.call_args.args[0]
        assert message.text.startswith("## Introduction")

        deliver()
        status = engine.job_status(created["analysisId"], owner_id)
        assert status["status"] == "COMPLETED"
        assert status["workflowStatus"] == "COMPLETED"

    def test_needs_fix_blocks_submission(self, engine, owner_id, draft):
        draft["introduction"]["purpose"] = ""
        aid = engine.submit(owner_id, draft=draft)["analysisId"]

        report = engine.validate_draft(aid, owner_id)

        assert report["status"] == "NEEDS_FIX"
        assert report["issues"][0]["section"] == "Introduction"
        with pytest.raises(ConflictError):
            engine.submit_draft(aid, owner_id)

    def test_unvalidated_draft_cannot_submit(self, engine, owner_id, draft):
        aid = engine.submit(owner_id, draft=draft)["analysisId"]
        with pytest.raises(ConflictError):
            engine.submit_draft(aid, owner_id)

    def test_update_resets_validation(self, engine, owner_id, draft):
        aid = engine.submit(owner_id, draft=draft)["analysisId"]
        engine.validate_draft(aid, owner_id)
        draft["introduction"]["scope"] = "Login, logout, password reset and lockout."

        updated = engine.update_draft(aid, owner_id, draft)

        assert updated["workflowStatus"] == "DRAFT"
        assert "validation" not in engine.get_analysis(aid, owner_id)["metadata"]

    def test_submitted_draft_is_frozen(self, engine, owner_id, draft):
        aid = engine.submit(owner_id, draft=draft)["analysisId"]
        engine.validate_draft(aid, owner_id)
        engine.submit_draft(aid, owner_id)

        with pytest.raises(ConflictError):
            engine.update_draft(aid, owner_id, draft)

    def test_interrupted_validation_can_rerun(self, engine, db_manager, owner_id, draft):
        from reqloom.core.db import Analysis
        aid = engine.submit(owner_id, draft=draft)["analysisId"]
        # Left behind by a worker that died mid-validation
        with db_manager.get_session() as session:
            session.get(Analysis, uuid.UUID(aid)).workflow_status = "VALIDATING"

        report = engine.validate_draft(aid, owner_id)
        assert report["status"] == "VALIDATED"

        with db_manager.get_session() as session:
            session.get(Analysis, uuid.UUID(aid)).workflow_status = "VALIDATING"
        updated = engine.update_draft(aid, owner_id, draft)
        assert updated["workflowStatus"] == "DRAFT"

    def test_semantic_blocker_needs_fix(self, db_manager, owner_id, queue, draft, make_llm):
        from reqloom.core.gateway import InferenceGateway
        verdict = {"validation_status": "FAIL", "issues": [{
            "section_id": "4", "title": "Drift", "issue_type": "SEMANTIC_MISMATCH",
            "description": "Login feature contradicts the stated scope.",
        }]}
        engine = AnalysisEngine(db_manager, inference=InferenceGateway(make_llm(verdict)), queue=queue)
        aid = engine.submit(owner_id, draft=draft)["analysisId"]

        report = engine.validate_draft(aid, owner_id)

        assert report["status"] == "NEEDS_FIX"
        assert report["semanticStatus"] == "FAIL"

    def test_semantic_check_unavailable(self, db_manager, owner_id, draft):
        engine = AnalysisEngine(db_manager)
        aid = engine.submit(owner_id, draft=draft)["analysisId"]

        report = engine.validate_draft(aid, owner_id)

        assert report["status"] == "VALIDATED"
        assert report["issues"][0]["section"] == "General"
        assert report["issues"][0]["severity"] == "warning"

    def test_text_analysis_is_not_a_draft(self, engine, owner_id, completed):
        with pytest.raises(InputError):
            engine.validate_draft(completed, owner_id)

    def test_malformed_draft_rejected(self, engine, owner_id):
        with pytest.raises(InputError):
            engine.submit(owner_id, draft={"systemFeatures": {"features": 7}})


class TestReads:

    def test_list_uses_preview(self, engine, owner_id, other_owner_id):
        text = "Build a login page with username, password and a remember-me checkbox"
        engine.submit(owner_id, text=text)
        engine.submit(other_owner_id, text="Someone else's request")

        rows = engine.list_analyses(owner_id)

        assert len(rows) == 1
        assert rows[0]["inputPreview"] == text[:50] + "..."
        assert "inputText" not in rows[0]

    def test_detail_has_full_text(self, engine, owner_id, completed):
        detail = engine.get_analysis(completed, owner_id)

        assert detail["inputText"] == "Build a login page"
        assert detail["resultJson"]["qualityAudit"]["score"] == 95
        assert detail["status"] == "COMPLETED"

    def test_detail_other_owner(self, engine, other_owner_id, completed):
        with pytest.raises(AuthorizationError):
            engine.get_analysis(completed, other_owner_id)

    def test_detail_unknown(self, engine, owner_id):
        with pytest.raises(NotFoundError):
            engine.get_analysis(str(uuid.uuid4()), owner_id)

    def test_history_newest_first_from_any_member(self, engine, owner_id, completed, login_result):
        v2 = engine.manual_edit(completed, owner_id, login_result)["newAnalysisId"]
        engine.manual_edit(v2, owner_id, login_result)

        history = engine.history(v2, owner_id)

        assert [h["version"] for h in history] == [3, 2, 1]
        assert {h["rootId"] for h in history} == {completed}

    def test_diff_between_versions(self, engine, owner_id, completed, login_result):
        login_result["functionalRequirements"] = ["Lock the account after 5 failed attempts."]
        v2 = engine.manual_edit(completed, owner_id, login_result)["newAnalysisId"]

        delta = engine.diff(completed, v2, owner_id)

        assert delta["sameLineage"] is True
        assert delta["from"]["version"] == 1
        assert delta["to"]["version"] == 2
        assert delta["changes"]["functionalRequirements"]["added"] == login_result["functionalRequirements"]
        assert delta["changes"]["inputText"]["changed"] is False


class TestProjects:

    def test_create_and_list(self, engine, owner_id, other_owner_id):
        project = engine.create_project(owner_id, "  Web shop  ", "Checkout revamp")

        assert project["name"] == "Web shop"
        assert engine.list_projects(owner_id) == [project]
        assert engine.list_projects(other_owner_id) == []

    def test_name_required(self, engine, owner_id):
        with pytest.raises(InputError):
            engine.create_project(owner_id, " ")

    def test_submit_into_project(self, engine, owner_id, other_owner_id):
        project = engine.create_project(owner_id, "Web shop")
        engine.submit(owner_id, text="Build a login page", project_id=project["id"])
        engine.submit(owner_id, text="Build a cart")

        assert len(engine.list_analyses(owner_id, project_id=project["id"])) == 1
        with pytest.raises(AuthorizationError):
            engine.submit(other_owner_id, text="Sneak in", project_id=project["id"])


class TestMetrics:

    def test_plain_llm_reports_empty(self, engine):
        assert engine.get_metrics()["llm"] == {}
