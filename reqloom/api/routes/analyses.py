"""Analysis API routes.

Handlers that may call the inference gateway (chat, code generation,
draft validation)
run the engine call in a worker thread so the event loop stays free.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query

from ..deps import get_current_user, get_engine
from ..schemas import ChatRequest, DraftUpdate, EditRequest, RegenerateRequest, SubmitRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])


@router.post("", status_code=202)
async def submit(
    data: SubmitRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(
        engine.submit,
        user["user_id"],
        text=data.text,
        settings=data.settings,
        draft=data.draft,
        project_id=data.projectId,
        parent_id=data.parentId,
        root_id=data.rootId,
    )


@router.get("")
async def list_analyses(
    projectId: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    analyses = engine.list_analyses(user["user_id"], project_id=projectId, limit=limit, offset=offset)
    return {"analyses": analyses, "count": len(analyses)}


@router.get("/diff")
async def diff(
    from_id: str = Query(..., alias="from"),
    to_id: str = Query(..., alias="to"),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.diff(from_id, to_id, user["user_id"])


@router.get("/{analysis_id}")
async def get_analysis(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.get_analysis(analysis_id, user["user_id"])


@router.get("/{analysis_id}/status")
async def job_status(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.job_status(analysis_id, user["user_id"])


@router.put("/{analysis_id}/draft")
async def update_draft(
    analysis_id: str,
    data: DraftUpdate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.update_draft(analysis_id, user["user_id"], data.draft)


@router.post("/{analysis_id}/validate")
async def validate_draft(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(engine.validate_draft, analysis_id, user["user_id"])


@router.post("/{analysis_id}/submit", status_code=202)
async def submit_draft(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(engine.submit_draft, analysis_id, user["user_id"])


@router.post("/{analysis_id}/chat")
async def chat(
    analysis_id: str,
    data: ChatRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(engine.chat, analysis_id, user["user_id"], data.message)


@router.get("/{analysis_id}/messages")
async def messages(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    items = engine.messages(analysis_id, user["user_id"])
    return {"messages": items, "count": len(items)}


@router.post("/{analysis_id}/regenerate", status_code=202)
async def regenerate(
    analysis_id: str,
    data: RegenerateRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(
        engine.regenerate,
        analysis_id,
        user["user_id"],
        data.improvementNotes,
        data.affectedSections,
    )


@router.post("/{analysis_id}/edit", status_code=201)
async def manual_edit(
    analysis_id: str,
    data: EditRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.manual_edit(analysis_id, user["user_id"], data.resultJson)


@router.post("/{analysis_id}/code", status_code=201)
async def generate_code(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(engine.generate_code, analysis_id, user["user_id"])


@router.post("/{analysis_id}/finalize")
async def finalize(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return await asyncio.to_thread(engine.finalize, analysis_id, user["user_id"])


@router.get("/{analysis_id}/history")
async def history(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    versions = engine.history(analysis_id, user["user_id"])
    return {"versions": versions, "count": len(versions)}


@router.get("/{analysis_id}/soft-cap")
async def soft_cap(
    analysis_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return engine.soft_cap_status(analysis_id, user["user_id"])
