"""Shared helpers for reqloom."""

from .llm_utils import extract_json, strip_code_fences

__all__ = ["extract_json", "strip_code_fences"]
