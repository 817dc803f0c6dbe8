"""Structured delta between two analysis versions."""

import json
from typing import Any, Dict, List, Mapping, Optional

from ..constants import DIFF_LIST_FIELDS, DIFF_TEXT_FIELDS


def _key(item: Any) -> str:
    return json.dumps(item, sort_keys=True, ensure_ascii=False, default=str)


def _flatten(value: Any) -> List[Any]:
    """List field as a flat list; NFR mappings become ``"category: text"`` items."""
    if value is None:
        return []
    if isinstance(value, dict):
        items = []
        for category, entries in value.items():
            for entry in entries if isinstance(entries, list) else [entries]:
                items.append(f"{category}: {entry}")
        return items
    if isinstance(value, list):
        return list(value)
    return [value]


def diff_lists(before: Any, after: Any) -> Dict[str, Any]:
    old, new = _flatten(before), _flatten(after)
    old_keys = {_key(i) for i in old}
    new_keys = {_key(i) for i in new}
    added = [i for i in new if _key(i) not in old_keys]
    removed = [i for i in old if _key(i) not in new_keys]
    return {"changed": bool(added or removed), "added": added, "removed": removed}


def diff_text(before: Optional[str], after: Optional[str]) -> Dict[str, Any]:
    before, after = before or "", after or ""
    return {"changed": before != after, "before": before, "after": after}


def diff_versions(
    old_text: Optional[str],
    old_result: Optional[Mapping[str, Any]],
    new_text: Optional[str],
    new_result: Optional[Mapping[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    """Compare the fixed field set. Fields absent on both sides compare equal."""
    old_result, new_result = old_result or {}, new_result or {}
    changes: Dict[str, Dict[str, Any]] = {}
    texts = {"inputText": (old_text, new_text)}
    for field in DIFF_TEXT_FIELDS:
        before, after = texts.get(field, (old_result.get(field), new_result.get(field)))
        changes[field] = diff_text(before, after)
    for field in DIFF_LIST_FIELDS:
        changes[field] = diff_lists(old_result.get(field), new_result.get(field))
    return changes
