"""LLM utility functions shared by inference, chat and validation.

Model output is free text that usually, but not always, contains a JSON
object. These helpers pull that object out the same way everywhere.
"""

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    cleaned = raw or ""
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1]
        if "```" in cleaned:
            cleaned = cleaned.split("```", 1)[0]
    elif cleaned.count("```") >= 2:
        cleaned = cleaned.split("```", 2)[1]
    return cleaned.strip()


def _first_balanced_object(text: str) -> Optional[str]:
    """Return the first brace-balanced ``{...}`` span, honouring strings."""
    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json(raw: str) -> Dict[str, Any]:
    """Parse the JSON object embedded in LLM output.

    Tries the fence-stripped text as-is first, then the first balanced
    object inside it.

    Raises:
        ValueError: if no JSON object can be recovered.
    """
    cleaned = strip_code_fences(raw)
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError as e:
        logger.debug(f"Direct JSON parse failed: {e}. Scanning for object.")

    candidate = _first_balanced_object(cleaned)
    if candidate is None:
        raise ValueError("No JSON object found in model output")
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed JSON in model output: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Model output JSON is not an object")
    return parsed
