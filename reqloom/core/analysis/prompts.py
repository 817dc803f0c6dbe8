"""Prompt templates for the analysis orchestrator.

Main templates:
1. build_analysis_prompt - initial / regenerated specification from requirements text
2. build_chat_prompt - conversational refinement of an existing result
3. build_validation_prompt - semantic drift check of a structured draft
4. build_code_prompt - starter project generated from a completed result
"""

import json
from typing import Any, Dict, List, Optional

PROMPT_VERSION = "v1.0"

_PERSONAS = {
    "default": "You are an expert Software Requirements Analyst strictly adhering to IEEE 830-1998 standards.",
    "business_analyst": (
        "You are a Senior Business Analyst focused on business value and ROI. "
        "Emphasize business goals, user benefits and operational efficiency."
    ),
    "system_architect": (
        "You are a Principal System Architect focused on scalability, reliability and technology. "
        "Emphasize performance, security, data consistency and service interactions."
    ),
    "security_analyst": (
        "You are a Lead Security Analyst focused on threat modeling and compliance. "
        "Explicitly address authentication, authorization, data privacy and encryption."
    ),
}

_RESULT_SCHEMA = """{
  "projectTitle": "Short descriptive title",
  "introduction": {"purpose": "...", "productScope": "..."},
  "overallDescription": {"productPerspective": "...", "productFunctions": ["..."]},
  "systemFeatures": [
    {
      "name": "Feature Name",
      "description": "Business and user value, with priority.",
      "stimulusResponseSequences": ["Stimulus: <action> Response: <behavior>"],
      "functionalRequirements": ["The system shall ..."]
    }
  ],
  "nonFunctionalRequirements": {
    "performanceRequirements": ["Measurable requirement, e.g. 'p95 latency under 200 ms'"],
    "securityRequirements": ["..."],
    "softwareQualityAttributes": ["..."]
  },
  "userStories": [
    {"role": "...", "feature": "Feature Name", "benefit": "...", "story": "As a ..., I want ..., so that ..."}
  ],
  "acceptanceCriteria": [
    {"story": "As a ...", "criteria": ["Given ... When ... Then ..."]}
  ],
  "glossary": [{"term": "...", "definition": "..."}]
}"""


def _detail_level(depth: int) -> str:
    if depth <= 2:
        return "Concise and high-level"
    if depth >= 4:
        return "Extremely detailed and exhaustive"
    return "Detailed and professional"


def _strictness(strictness: int) -> str:
    if strictness >= 4:
        return "STRICTNESS: HIGH. Do NOT infer features not explicitly requested."
    if strictness <= 2:
        return "STRICTNESS: LOW. Proactively infer necessary supporting features."
    return "STRICTNESS: MEDIUM. Infer standard implicit features but do not invent core modules."


def build_analysis_prompt(
    text: str,
    settings: Optional[Dict[str, Any]] = None,
    reuse_context: Optional[Dict[str, Any]] = None,
    parent_result: Optional[Dict[str, Any]] = None,
    regenerate: bool = False,
) -> str:
    """Build the main specification prompt.

    Args:
        text: Normalized requirements text
        settings: Prompt settings (profile, depth, strictness, improvementNotes,
            affectedSections)
        reuse_context: Result of a similar finalized analysis, when one was found
        parent_result: Previous version's result, for regeneration
        regenerate: Emit the improvement request even when no earlier
            result exists (the lineage never completed)
    """
    settings = settings or {}
    persona = _PERSONAS.get(settings.get("profile", "default"), _PERSONAS["default"])
    depth = int(settings.get("depth", 3))
    strictness = int(settings.get("strictness", 3))

    reuse_section = ""
    if reuse_context:
        reuse_section = (
            f"\n## REFERENCE ANALYSIS ({reuse_context.get('tier', 'HIGH')} similarity)\n"
            "A previously finalized specification covers a similar request. Reuse its structure "
            "and wording where it fits; do not copy requirements that do not apply.\n"
            f"{json.dumps(reuse_context.get('result') or {}, indent=2)[:8000]}\n"
        )

    regeneration_section = ""
    if regenerate or parent_result is not None:
        notes = settings.get("improvementNotes") or "Improve overall quality."
        sections = settings.get("affectedSections") or []
        scope = (
            f"Only revise these sections: {', '.join(sections)}. Keep all other sections unchanged."
            if sections else "Revise any section that needs it."
        )
        if parent_result is not None:
            regeneration_section = (
                "\n## PREVIOUS VERSION\n"
                f"{json.dumps(parent_result, indent=2)}\n"
            )
        regeneration_section += (
            "\n## IMPROVEMENT REQUEST\n"
            f"{notes}\n{scope}\n"
        )

    return f"""{persona}

DETAIL LEVEL: {_detail_level(depth)}
{_strictness(strictness)}

Non-functional requirements MUST be measurable (numbers, percentages, time or throughput units).
Avoid ambiguous terms such as fast, easy, robust, seamless, efficient, simple, scalable.
Every user story MUST name the feature it maps to.
{reuse_section}{regeneration_section}
## OUTPUT
Return VALID JSON ONLY, no markdown wrappers, in this structure:
{_RESULT_SCHEMA}

## USER INPUT
{text}
"""


def build_chat_prompt(
    current_result: Optional[Dict[str, Any]],
    history: List[Dict[str, str]],
    message: str,
    input_text: str = "",
) -> str:
    """Build the conversational refinement prompt.

    The model must answer with ``{"reply": str, "updatedAnalysis": null | {...}}``.
    """
    history_text = "\n".join(f"{m['role']}: {m['content']}" for m in history)
    return f"""You are an intelligent assistant helping a user refine their Software Requirements Analysis.
You have the original request, the current analysis (JSON) and the conversation history.

Your goal is to:
1. Answer the user's questions about the project.
2. UPDATE the analysis JSON only if the user requests changes.

EDITING RULES:
- Preserve section boundaries and never add or remove requirements silently.
- If "updatedAnalysis" is provided it must be the COMPLETE object with all fields.

OUTPUT: return ONLY raw JSON:
{{"reply": "Your conversational response", "updatedAnalysis": null}}

ORIGINAL REQUEST:
{input_text}

CURRENT ANALYSIS:
{json.dumps(current_result or {}, indent=2)}

CHAT HISTORY:
{history_text}

User: {message}
"""


def build_validation_prompt(draft: Dict[str, Any]) -> str:
    """Build the semantic drift check prompt for a structured draft."""
    return f"""You are a strict Requirements Engineering Validation System.
Validate the raw input for a Software Requirements Specification.

CORE PRINCIPLE: the Introduction (Purpose/Scope) defines the product domain.
Every other section must align with that domain.

INTAKE DATA:
{json.dumps(draft, indent=2)}

OUTPUT SCHEMA (strict JSON):
{{
  "validation_status": "PASS" | "FAIL",
  "issues": [
    {{
      "section_id": "string",
      "subsection_id": "string",
      "title": "Short summary",
      "issue_type": "SEMANTIC_MISMATCH" | "SCOPE_CREEP" | "AMBIGUITY" | "INCOMPLETE" | "OTHER",
      "conflict_type": "HARD_CONFLICT" | "SOFT_DRIFT" | "NONE",
      "severity": "BLOCKER" | "WARNING",
      "description": "Why it matches or drifts",
      "suggested_fix": "Actionable advice"
    }}
  ]
}}

CLASSIFICATION:
- SEMANTIC_MISMATCH (hard conflict): belongs to a different domain than Section 1 -> BLOCKER.
- SCOPE_CREEP (soft drift): related but expands scope beyond Section 1 -> WARNING (BLOCKER if extreme).
- AMBIGUITY: vague terms such as "fast" or "easy" -> WARNING.
- INCOMPLETE: missing core fields in a feature -> BLOCKER.

DECISION: any BLOCKER -> FAIL; only WARNINGs -> PASS.
"""


def build_code_prompt(result: Dict[str, Any]) -> str:
    """Build the starter-code prompt over a completed structured result."""
    return f"""You are an expert full-stack developer (React, Node.js, Prisma).
Generate a complete project structure and the key code files for the
software requirements analysis below.

OUTPUT: return ONLY a valid JSON object with this structure:
{{
  "explanation": "Brief summary of the stack and architecture decisions.",
  "fileStructure": [
    {{"path": "backend/src/server.ts", "type": "file" | "directory", "children": []}}
  ],
  "databaseSchema": "Raw Prisma schema content (schema.prisma)",
  "backendRoutes": [{{"path": "backend/src/routes/authRoutes.ts", "code": "Full source code"}}],
  "frontendComponents": [{{"path": "frontend/src/components/LoginForm.tsx", "code": "Full source code"}}],
  "testCases": [{{"path": "tests/auth.test.ts", "code": "Full source code for the tests"}}],
  "backendReadme": "Markdown for backend/README.md: setup, env vars, run instructions.",
  "frontendReadme": "Markdown for frontend/README.md: setup, dependencies, run instructions."
}}

RULES:
1. "fileStructure" is a recursive tree.
2. Cover every system feature and user story with at least one route or component.
3. Escape all newlines and quotes inside code strings so the JSON stays valid.

ANALYSIS:
{json.dumps(result or {}, indent=2)}
"""
