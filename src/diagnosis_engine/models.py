"""Data model for answers, diagnoses, similarity cache, and refinement trail.

Records are plain dataclasses.  Repositories hand out copies, so mutating
a loaded record never changes stored state until it is written back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from diagnosis_engine.traits import (
    BEHAVIOR_PATTERN,
    BIG_FIVE,
    THINKING_PATTERN,
    TraitVector,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class QuestionCategory(StrEnum):
    EXTRAVERSION = "EXTRAVERSION"
    OPENNESS = "OPENNESS"
    AGREEABLENESS = "AGREEABLENESS"
    CONSCIENTIOUSNESS = "CONSCIENTIOUSNESS"
    NEUROTICISM = "NEUROTICISM"
    THINKING = "THINKING"
    BEHAVIOR = "BEHAVIOR"


# Category → bigFive dimension
BIG_FIVE_CATEGORIES: dict[QuestionCategory, str] = {
    QuestionCategory.EXTRAVERSION: "extraversion",
    QuestionCategory.OPENNESS: "openness",
    QuestionCategory.AGREEABLENESS: "agreeableness",
    QuestionCategory.CONSCIENTIOUSNESS: "conscientiousness",
    QuestionCategory.NEUROTICISM: "neuroticism",
}


class ReliabilityStatus(StrEnum):
    RELIABLE = "RELIABLE"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    UNRELIABLE = "UNRELIABLE"


class StressTolerance(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Grade(StrEnum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class ExternalDiagnosisType(StrEnum):
    """Secondary diagnoses supplied from outside the engine."""

    MBTI = "MBTI"
    ANIMAL_FORTUNE = "ANIMAL_FORTUNE"


class TriggerType(StrEnum):
    """What prompted a refinement attempt."""

    INITIAL = "INITIAL"
    SIGNAL_A_ADDED = "SIGNAL_A_ADDED"
    SIGNAL_B_ADDED = "SIGNAL_B_ADDED"
    EVALUATION_ADDED = "EVALUATION_ADDED"
    MANUAL = "MANUAL"


class RefinementState(StrEnum):
    IDLE = "IDLE"
    COLLECTING = "COLLECTING"
    EVALUATING = "EVALUATING"
    APPLIED = "APPLIED"
    SUPPRESSED = "SUPPRESSED"
    FAILED = "FAILED"


class DisplayDecision(StrEnum):
    SHOWN = "shown"
    SUPPRESSED = "suppressed"
    FALLBACK = "fallback"


# ---------------------------------------------------------------------------
# Survey input
# ---------------------------------------------------------------------------


@dataclass
class Question:
    """Reference data for one survey question.

    THINKING questions declare which thinking sub-dimension they feed.
    """

    id: str
    category: QuestionCategory
    order_number: int
    page: int
    is_reverse: bool = False
    is_active: bool = True
    thinking_dimension: str | None = None


@dataclass
class Answer:
    user_id: str
    question_id: str
    score: int


# ---------------------------------------------------------------------------
# Diagnosis
# ---------------------------------------------------------------------------


@dataclass
class TraitSnapshot:
    """Labels and vectors at one point in time, as stored in history rows."""

    feature_labels: list[str]
    big_five: TraitVector
    thinking_pattern: TraitVector
    behavior_pattern: TraitVector

    def vectors(self) -> dict[str, TraitVector]:
        return {
            BIG_FIVE: self.big_five,
            THINKING_PATTERN: self.thinking_pattern,
            BEHAVIOR_PATTERN: self.behavior_pattern,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "featureLabels": list(self.feature_labels),
            BIG_FIVE: dict(self.big_five),
            THINKING_PATTERN: dict(self.thinking_pattern),
            BEHAVIOR_PATTERN: dict(self.behavior_pattern),
        }


@dataclass
class DiagnosisResult:
    """The single mutable "current" diagnosis of a user."""

    id: str
    user_id: str
    type_code: str
    type_name: str
    feature_labels: list[str]
    reliability_status: ReliabilityStatus
    stress_tolerance: StressTolerance
    big_five: TraitVector
    thinking_pattern: TraitVector
    behavior_pattern: TraitVector
    version: str
    reliability_issues: list[str] = field(default_factory=list)
    completed_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def vectors(self) -> dict[str, TraitVector]:
        return self.snapshot().vectors()

    def snapshot(self) -> TraitSnapshot:
        return TraitSnapshot(
            feature_labels=list(self.feature_labels),
            big_five=dict(self.big_five),
            thinking_pattern=dict(self.thinking_pattern),
            behavior_pattern=dict(self.behavior_pattern),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "typeCode": self.type_code,
            "typeName": self.type_name,
            "featureLabels": list(self.feature_labels),
            "reliabilityStatus": self.reliability_status.value,
            "reliabilityIssues": list(self.reliability_issues),
            "stressTolerance": self.stress_tolerance.value,
            BIG_FIVE: dict(self.big_five),
            THINKING_PATTERN: dict(self.thinking_pattern),
            BEHAVIOR_PATTERN: dict(self.behavior_pattern),
            "version": self.version,
            "completedAt": self.completed_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class PotentialScore:
    diagnosis_result_id: str
    job_type: str
    grade: Grade
    score: int

    def to_dict(self) -> dict[str, Any]:
        return {"jobType": self.job_type, "grade": self.grade.value, "score": self.score}


# ---------------------------------------------------------------------------
# Similarity cache
# ---------------------------------------------------------------------------


@dataclass
class SimilarityScore:
    """Directional cache row: how similar ``similar_user_id`` is to ``user_id``.

    The version stamps record which diagnosis versions it was computed from.
    """

    user_id: str
    similar_user_id: str
    similarity_percentage: int
    differing_factors: list[str]
    user_version: str
    similar_user_version: str
    calculated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# External signals
# ---------------------------------------------------------------------------


@dataclass
class ExternalDiagnosis:
    user_id: str
    type: ExternalDiagnosisType
    result: dict[str, Any]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class InterviewEvaluation:
    user_id: str
    comment: str
    rating: int | None = None
    tags: list[str] = field(default_factory=list)
    structured_evaluation: dict[str, Any] | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Refinement trail
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
        }


@dataclass
class BrushUpHistory:
    """Append-only ledger row for one applied refinement."""

    diagnosis_result_id: str
    version: str
    trigger_type: TriggerType
    previous_data: TraitSnapshot
    updated_data: TraitSnapshot
    ai_reasoning: str
    trigger_source_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AuditLogEntry:
    """Append-only record of one refinement attempt, whatever its outcome.

    ``brush_up_history_id`` is set only when the attempt was applied.
    """

    diagnosis_result_id: str
    input_hash: str
    model_version: str
    confidence: float
    risk_flag: bool
    display_decision: DisplayDecision
    input_data: dict[str, Any]
    output_data: dict[str, Any] | None = None
    usage: TokenUsage | None = None
    error_message: str | None = None
    brush_up_history_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
