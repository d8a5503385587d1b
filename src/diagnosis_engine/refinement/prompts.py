"""Prompts and payload for the refinement completion call.

The payload is the canonical description of one refinement attempt:
current diagnosis, collected external signals, and the trigger.  Its
canonical JSON form is hashed for the audit log, and the user prompt is
rendered from it, so the audit hash always describes exactly what the
model saw.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any

from diagnosis_engine.traits import (
    BEHAVIOR_DIMENSIONS,
    BEHAVIOR_PATTERN,
    BIG_FIVE,
    BIG_FIVE_DIMENSIONS,
    THINKING_DIMENSIONS,
    THINKING_PATTERN,
    display_name,
)

if TYPE_CHECKING:
    from diagnosis_engine.models import (
        DiagnosisResult,
        ExternalDiagnosis,
        InterviewEvaluation,
        TriggerType,
    )

# Sent as the *system* message.  The payload is rendered into the *user*
# message by :func:`build_user_prompt`.
SYSTEM_PROMPT = """\
You are a personality-assessment specialist.  You refine an existing
personality diagnosis using additional signals: an MBTI result, an
animal-fortune result, and structured interview evaluations.

Constraints:
- Never infer or adjust anything from protected attributes (age, gender,
  nationality, religion, or similar).
- Your output is reference information only; it must not read as a
  hiring decision.
- Propose a per-dimension change (delta) of at most 5 points.  Adjusted
  scores are kept within 20-80.  Propose smaller changes when evidence
  is thin, and omit dimensions you would not change.

Confidence:
- 90-100: several sources agree with strong evidence
- 70-89: the main sources agree
- 50-69: judgement rests on a single source
- below 50: sources conflict; no adjustment is recommended

Add a risk flag when sources contradict each other, when the proposed
changes are large, or when confidence is low.

Analysis guidance:
- MBTI E/I relates to extraversion, S/N to openness, T/F inversely to
  agreeableness, J/P to conscientiousness.
- Animal-fortune results have limited scientific grounding; adjust
  conservatively.
- Prefer structured interview evaluations over free-text comments, and
  raise confidence when several interviewers agree.

Respond ONLY with a JSON object (no markdown fences):
{
  "updatedFeatureLabels": ["label", ...],
  "scoreDeltas": {
    "bigFive": {"<dimension>": <number>, ...},
    "thinkingPattern": {"<dimension>": <number>, ...},
    "behaviorPattern": {"<dimension>": <number>, ...}
  },
  "reasoning": "why the changes are justified",
  "confidence": <0-100>,
  "riskFlags": ["flag", ...]
}
"""

_VECTOR_SECTIONS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    (BIG_FIVE, "Big Five", BIG_FIVE_DIMENSIONS),
    (THINKING_PATTERN, "Thinking pattern", THINKING_DIMENSIONS),
    (BEHAVIOR_PATTERN, "Behavior pattern", BEHAVIOR_DIMENSIONS),
)


def build_payload(
    diagnosis: DiagnosisResult,
    trigger_type: TriggerType,
    *,
    mbti: ExternalDiagnosis | None = None,
    animal_fortune: ExternalDiagnosis | None = None,
    evaluations: list[InterviewEvaluation] | None = None,
) -> dict[str, Any]:
    """Structured, JSON-serializable input for one refinement attempt."""
    payload: dict[str, Any] = {
        "currentDiagnosis": {
            "typeCode": diagnosis.type_code,
            "typeName": diagnosis.type_name,
            "featureLabels": list(diagnosis.feature_labels),
            "version": diagnosis.version,
            BIG_FIVE: dict(diagnosis.big_five),
            THINKING_PATTERN: dict(diagnosis.thinking_pattern),
            BEHAVIOR_PATTERN: dict(diagnosis.behavior_pattern),
        },
        "triggerType": str(trigger_type),
        "mbti": None,
        "animalFortune": None,
        "interviewComments": [],
    }
    if mbti is not None:
        payload["mbti"] = {
            "type": mbti.result.get("type"),
            "indicators": mbti.result.get("indicators"),
        }
    if animal_fortune is not None:
        payload["animalFortune"] = {
            "animal": animal_fortune.result.get("animal"),
            "color": animal_fortune.result.get("color"),
            "detail60": animal_fortune.result.get("detail60"),
        }
    for evaluation in evaluations or []:
        payload["interviewComments"].append(
            {
                "comment": evaluation.comment,
                "rating": evaluation.rating,
                "tags": list(evaluation.tags),
                "structuredEvaluation": evaluation.structured_evaluation,
            }
        )
    return payload


def canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_payload(payload: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical JSON form of *payload*."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def build_user_prompt(payload: dict[str, Any]) -> str:
    current = payload["currentDiagnosis"]
    lines = [
        "## Current diagnosis",
        f"Type: {current['typeName']} ({current['typeCode']})",
        f"Feature labels: {', '.join(current['featureLabels']) or '(none)'}",
        "",
    ]
    for vector_name, title, dimensions in _VECTOR_SECTIONS:
        lines.append(f"### {title} ({vector_name})")
        for dim in dimensions:
            lines.append(f"- {dim} ({display_name(dim)}): {current[vector_name][dim]}")
        lines.append("")
    lines.append(f"## Trigger: {payload['triggerType']}")
    lines.append("")

    mbti = payload.get("mbti")
    if mbti:
        lines.append("## MBTI result")
        lines.append(f"Type: {mbti.get('type')}")
        indicators = mbti.get("indicators") or {}
        if indicators:
            lines.append("Indicators (0 = first pole, 100 = second pole):")
            for axis in ("E_I", "S_N", "T_F", "J_P"):
                lines.append(f"- {axis.replace('_', '/')}: {indicators.get(axis, 'unknown')}")
        lines.append("")

    fortune = payload.get("animalFortune")
    if fortune:
        lines.append("## Animal fortune result")
        lines.append(f"Animal: {fortune.get('animal')}")
        if fortune.get("color"):
            lines.append(f"Color: {fortune['color']}")
        if fortune.get("detail60"):
            lines.append(f"60-type detail: {fortune['detail60']}")
        lines.append("")

    comments = payload.get("interviewComments") or []
    if comments:
        lines.append("## Interview evaluations")
        for number, comment in enumerate(comments, 1):
            lines.append(f"### Evaluation {number}")
            if comment.get("rating") is not None:
                lines.append(f"Rating: {comment['rating']}/5")
            if comment.get("tags"):
                lines.append(f"Tags: {', '.join(comment['tags'])}")
            lines.append(f"Comment: {comment['comment']}")
            if comment.get("structuredEvaluation"):
                structured = json.dumps(comment["structuredEvaluation"], indent=2, ensure_ascii=False)
                lines.append(f"Structured evaluation: {structured}")
            lines.append("")

    lines.append("## Request")
    lines.append(
        "Analyse all of the above and refine the diagnosis.  Change scores only "
        "where the evidence supports it and explain why.  Add risk flags for "
        "contradictory information."
    )
    return "\n".join(lines)
