"""Job message carried by the delivery queue."""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from ..exceptions import InputError

_REQUIRED = ("analysis_id", "owner_id", "text")


@dataclass
class JobMessage:
    """One unit of inference work, referencing an already-persisted record."""
    analysis_id: str
    owner_id: str
    text: str
    settings: Dict[str, Any] = field(default_factory=dict)
    parent_id: Optional[str] = None
    root_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobMessage":
        """Build a message from a decoded callback body.

        Accepts camelCase keys as sent by older producers.

        Raises:
            InputError: a required field is missing or empty.
        """
        if not isinstance(data, dict):
            raise InputError("Job message must be a JSON object")

        def pick(snake: str, camel: str):
            value = data.get(snake)
            return value if value is not None else data.get(camel)

        values = {
            "analysis_id": pick("analysis_id", "analysisId"),
            "owner_id": pick("owner_id", "userId") or data.get("ownerId"),
            "text": data.get("text"),
        }
        missing = [k for k in _REQUIRED if not values[k]]
        if missing:
            raise InputError(f"Job message missing fields: {', '.join(missing)}")

        settings = data.get("settings") or {}
        if not isinstance(settings, dict):
            raise InputError("Job message settings must be an object")

        parent_id = pick("parent_id", "parentId")
        root_id = pick("root_id", "rootId")
        return cls(
            analysis_id=str(values["analysis_id"]),
            owner_id=str(values["owner_id"]),
            text=values["text"],
            settings=settings,
            parent_id=str(parent_id) if parent_id else None,
            root_id=str(root_id) if root_id else None,
        )

    @classmethod
    def from_json(cls, body) -> "JobMessage":
        try:
            data = json.loads(body)
        except (TypeError, ValueError) as e:
            raise InputError(f"Job message is not valid JSON: {e}") from e
        return cls.from_dict(data)
