"""Project API routes."""

import logging

from fastapi import APIRouter, Depends

from ..deps import get_current_user, get_engine
from ..schemas import ProjectCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    project = engine.create_project(user["user_id"], data.name, data.description)
    return {"success": True, "project": project}


@router.get("")
async def list_projects(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    projects = engine.list_projects(user["user_id"])
    return {"success": True, "projects": projects, "count": len(projects)}
