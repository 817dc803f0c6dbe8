"""API request schemas."""

from .analysis import (
    ChatRequest,
    DraftUpdate,
    EditRequest,
    ProjectCreate,
    RegenerateRequest,
    SubmitRequest,
)

__all__ = [
    "ChatRequest",
    "DraftUpdate",
    "EditRequest",
    "ProjectCreate",
    "RegenerateRequest",
    "SubmitRequest",
]
