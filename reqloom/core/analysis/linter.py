"""Quality linter for structured requirement results.

Pure and deterministic: the same result always yields the same score
and issue list, so it runs at initial completion and after every edit.

Rules (independent, each deducts from 100):
- ambiguous term in a functional requirement or user-story benefit: -5 per occurrence
- user story without a mapped feature: -15
- non-functional requirement with no number, percentage or unit: -10
- user stories present but an empty acceptance-criteria list: -20 (once)
- acceptance-criteria entry with no criteria: -10
"""

import re
from typing import Any, Iterator, List, Mapping, Tuple, Union

from pydantic import BaseModel

from ..constants import (
    AMBIGUITY_PENALTY,
    AMBIGUOUS_TERMS,
    EMPTY_CRITERIA_PENALTY,
    MISSING_FEATURE_PENALTY,
    NO_ACCEPTANCE_CRITERIA_PENALTY,
    UNMEASURABLE_NFR_PENALTY,
)
from .models import LintReport

_AMBIGUITY_RE = re.compile(
    r"\b(" + "|".join(re.escape(t) for t in AMBIGUOUS_TERMS) + r")\b",
    re.IGNORECASE,
)

_MEASURABLE_RE = re.compile(
    r"\d|%|\b("
    r"ms|milliseconds?|seconds?|secs?|minutes?|mins?|hours?|hrs?|days?"
    r"|rps|tps|qps|requests per (second|minute)|transactions per second"
    r"|concurrent|uptime|users|kb|mb|gb|tb"
    r")\b",
    re.IGNORECASE,
)


def _as_text(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        for key in ("description", "text", "requirement", "title"):
            if isinstance(item.get(key), str):
                return item[key]
    return "" if item is None else str(item)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _functional_requirements(result: Mapping) -> List[str]:
    reqs = [_as_text(r) for r in _as_list(result.get("functionalRequirements"))]
    for feature in _as_list(result.get("systemFeatures")):
        if isinstance(feature, Mapping):
            reqs.extend(_as_text(r) for r in _as_list(feature.get("functionalRequirements")))
    return reqs


def _non_functional_requirements(result: Mapping) -> Iterator[Tuple[str, str]]:
    """Yield (category, requirement). Category is empty for flat lists."""
    nfrs = result.get("nonFunctionalRequirements")
    if isinstance(nfrs, list):
        for req in nfrs:
            yield "", _as_text(req)
    elif isinstance(nfrs, Mapping):
        for category, reqs in nfrs.items():
            items = reqs if isinstance(reqs, list) else [reqs]
            for req in items:
                if req:
                    yield str(category), _as_text(req)


def lint(result: Union[Mapping[str, Any], BaseModel, None]) -> LintReport:
    """Score ``result`` in [0, 100] and list its defects."""
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    result = result if isinstance(result, Mapping) else {}

    score = 100
    issues: List[str] = []

    # 1. Ambiguity in functional requirements
    for idx, req in enumerate(_functional_requirements(result), start=1):
        for match in _AMBIGUITY_RE.finditer(req):
            issues.append(f'Ambiguity in FR #{idx}: Avoid words like "{match.group(0)}". Be specific.')
            score -= AMBIGUITY_PENALTY

    # 2. User stories: feature mapping and ambiguous benefits
    stories = _as_list(result.get("userStories"))
    for idx, story in enumerate(stories, start=1):
        story = story if isinstance(story, Mapping) else {}
        feature = story.get("feature")
        if not isinstance(feature, str) or not feature.strip():
            issues.append(f"User Story #{idx} is missing a mapped Feature.")
            score -= MISSING_FEATURE_PENALTY
        benefit = story.get("benefit")
        if isinstance(benefit, str):
            for match in _AMBIGUITY_RE.finditer(benefit):
                issues.append(f'Ambiguity in User Story #{idx} Benefit: Avoid "{match.group(0)}".')
                score -= AMBIGUITY_PENALTY

    # 3. Measurability of non-functional requirements
    for idx, (category, req) in enumerate(_non_functional_requirements(result), start=1):
        if not _MEASURABLE_RE.search(req):
            label = f"NFR #{idx} ({category})" if category else f"NFR #{idx}"
            issues.append(
                f'{label} is not measurable. Add metrics (e.g., "load < 200ms", "99.9% uptime").'
            )
            score -= UNMEASURABLE_NFR_PENALTY

    # 4. Acceptance criteria completeness (only when the section is present)
    criteria = result.get("acceptanceCriteria")
    if isinstance(criteria, list):
        if not criteria and stories:
            issues.append("Missing Acceptance Criteria for User Stories.")
            score -= NO_ACCEPTANCE_CRITERIA_PENALTY
        for ac in criteria:
            ac = ac if isinstance(ac, Mapping) else {}
            if not _as_list(ac.get("criteria")):
                issues.append(f'Acceptance Criteria for "{ac.get("story") or "unnamed story"}" is empty.')
                score -= EMPTY_CRITERIA_PENALTY

    return LintReport(score=max(0, min(100, score)), issues=issues)


def apply_quality_audit(result: Mapping[str, Any]) -> dict:
    """Return a copy of ``result`` with ``qualityAudit`` set from ``lint()``."""
    merged = dict(result)
    merged["qualityAudit"] = lint(result).to_dict()
    return merged
