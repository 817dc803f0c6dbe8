"""Record -> response dict conversions shared by the engine and revision flow."""

from typing import Any, Dict, Optional

from ..constants import PREVIEW_CHARS
from ..db import Analysis, ChatMessage


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def preview(text: Optional[str], limit: int = PREVIEW_CHARS) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


def analysis_summary(record: Analysis) -> Dict[str, Any]:
    """List/history view: no result body."""
    metadata = record.analysis_metadata or {}
    return {
        "id": str(record.analysis_id),
        "rootId": _str(record.root_id),
        "parentId": _str(record.parent_id),
        "version": record.version,
        "title": record.title,
        "status": record.status,
        "workflowStatus": record.workflow_status,
        "isFinalized": bool(record.is_finalized),
        "trigger": metadata.get("trigger"),
        "source": metadata.get("source"),
        "inputPreview": preview(record.input_text),
        "createdAt": _iso(record.created_at),
        "completedAt": _iso(record.completed_at),
    }


def analysis_detail(record: Analysis) -> Dict[str, Any]:
    data = analysis_summary(record)
    data.update({
        "projectId": _str(record.project_id),
        "inputText": record.input_text,
        "resultJson": record.result_json,
        "generatedCode": record.generated_code,
        "metadata": record.analysis_metadata or {},
        "hasSignature": record.vector_signature is not None,
        "error": record.error_message,
        "updatedAt": _iso(record.updated_at),
    })
    return data


def message_dict(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": str(message.message_id),
        "analysisId": str(message.analysis_id),
        "role": message.role,
        "content": message.content,
        "createdAt": _iso(message.created_at),
    }
