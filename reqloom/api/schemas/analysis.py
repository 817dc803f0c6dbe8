"""Analysis request schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubmitRequest(BaseModel):
    """Submit free text, or open a structured draft."""
    text: Optional[str] = Field(None, description="Requirements text")
    draft: Optional[Dict[str, Any]] = Field(None, description="Structured intake draft")
    settings: Dict[str, Any] = Field(
        default_factory=dict, description="Prompt settings (profile, depth, strictness)",
    )
    projectId: Optional[str] = Field(None, description="Project UUID")
    parentId: Optional[str] = Field(None, description="Version to derive from")
    rootId: Optional[str] = Field(None, description="Lineage to append to")


class DraftUpdate(BaseModel):
    draft: Dict[str, Any] = Field(..., description="Replacement draft")


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message")


class RegenerateRequest(BaseModel):
    improvementNotes: Optional[str] = Field(None, description="What to improve")
    affectedSections: Optional[List[str]] = Field(None, description="Sections to revise")


class EditRequest(BaseModel):
    resultJson: Dict[str, Any] = Field(..., description="Edited structured result")


class ProjectCreate(BaseModel):
    """Create project request."""
    name: str = Field(..., description="Project name", min_length=1)
    description: Optional[str] = Field(None, description="Project description")
