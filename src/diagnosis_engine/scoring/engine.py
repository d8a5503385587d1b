"""Trait scoring — completed answer set → diagnosis.

The :class:`TraitScoringEngine` is pure: it reads answers and question
reference data and returns a :class:`ScoredDiagnosis` without touching
any repository.  Persisting the result is the survey service's job.

Pipeline:

1. Reverse-scored answers are transformed to ``8 − s``
2. Each category average maps from the 1–7 scale onto 0–100
3. ``bigFive`` comes from the five personality categories
4. ``thinkingPattern`` averages THINKING answers per declared sub-dimension
5. ``behaviorPattern`` is a fixed blend of bigFive and thinking values
6. Type code, feature labels, and stress tolerance are derived
7. The raw answer sequence is checked for reliability
8. Potential scores are computed for every job profile
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.models import (
    BIG_FIVE_CATEGORIES,
    DiagnosisResult,
    PotentialScore,
    QuestionCategory,
    StressTolerance,
    new_id,
    utcnow,
)
from diagnosis_engine.scoring.potential import compute_potential_scores
from diagnosis_engine.scoring.reliability import ReliabilityReport, check_reliability
from diagnosis_engine.traits import (
    BIG_FIVE_DIMENSIONS,
    NEUTRAL_VALUE,
    THINKING_DIMENSIONS,
    TraitVector,
    round_score,
)
from diagnosis_engine.versioning import increment_version

if TYPE_CHECKING:
    from collections.abc import Iterable

    from diagnosis_engine.models import Answer, Question

logger = logging.getLogger(__name__)

MIN_ANSWER_SCORE = 1
MAX_ANSWER_SCORE = 7
MAX_FEATURE_LABELS = 5

# (extraversion ≥ 50 → E | I) + (leader ≥ 50 → L | E)
TYPE_TABLE: dict[str, str] = {
    "EL": "Leader",
    "EE": "Entertainer",
    "IL": "Analyst",
    "IE": "Creator",
}
DEFAULT_TYPE_CODE = "ST"
DEFAULT_TYPE_NAME = "Standard"

HIGH_THRESHOLD = 70
LOW_THRESHOLD = 30

# Evaluated in order; the first five matches become the feature labels.
# Each rule: (dimension, "high" | "low", label)
FEATURE_LABEL_RULES: tuple[tuple[str, str, str], ...] = (
    ("extraversion", "high", "Sociable"),
    ("extraversion", "low", "Introspective"),
    ("openness", "high", "Creative"),
    ("agreeableness", "high", "Cooperative"),
    ("conscientiousness", "high", "Methodical"),
    ("neuroticism", "low", "Composed"),
    ("leader", "high", "Logical"),
    ("analyst", "high", "Analytical"),
    ("supporter", "high", "Strategic"),
    ("efficiency", "high", "Efficiency-driven"),
    ("challenge", "high", "Challenge-seeking"),
)


@dataclass
class ScoredDiagnosis:
    """Everything :meth:`TraitScoringEngine.compute_diagnosis` produces."""

    diagnosis: DiagnosisResult
    potential_scores: list[PotentialScore]
    reliability: ReliabilityReport


# ---------------------------------------------------------------------------
# Scale helpers
# ---------------------------------------------------------------------------


def transform_score(score: int, *, is_reverse: bool) -> int:
    """Reverse-scored questions contribute ``8 − s``."""
    return (MAX_ANSWER_SCORE + MIN_ANSWER_SCORE) - score if is_reverse else score


def category_score(scores: list[int]) -> int:
    """Map the average of 1–7 scores onto 0–100; an empty category is neutral."""
    if not scores:
        return round_score(NEUTRAL_VALUE)
    average = sum(scores) / len(scores)
    return round_score((average - 1) / 6 * 100)


def derive_behavior_pattern(big_five: TraitVector, thinking: TraitVector) -> TraitVector:
    return {
        "efficiency": round_score((big_five["conscientiousness"] + thinking["leader"]) / 2),
        "friendliness": round_score((big_five["agreeableness"] + big_five["extraversion"]) / 2),
        "knowledge": round_score((big_five["openness"] + thinking["analyst"]) / 2),
        "appearance": round_score((100 - big_five["neuroticism"] + big_five["extraversion"]) / 2),
        "challenge": round_score((big_five["openness"] + thinking["supporter"]) / 2),
    }


def classify_type(big_five: TraitVector, thinking: TraitVector) -> tuple[str, str]:
    """Return ``(type_code, type_name)``."""
    key = ("E" if big_five["extraversion"] >= 50 else "I") + (
        "L" if thinking["leader"] >= 50 else "E"
    )
    if key in TYPE_TABLE:
        return key, TYPE_TABLE[key]
    return DEFAULT_TYPE_CODE, DEFAULT_TYPE_NAME


def feature_labels(values: dict[str, float]) -> list[str]:
    labels: list[str] = []
    for dimension, direction, label in FEATURE_LABEL_RULES:
        value = values[dimension]
        if direction == "high" and value >= HIGH_THRESHOLD:
            labels.append(label)
        elif direction == "low" and value <= LOW_THRESHOLD:
            labels.append(label)
    return labels[:MAX_FEATURE_LABELS]


def stress_tolerance(neuroticism: float) -> StressTolerance:
    tolerance = 100 - neuroticism
    if tolerance >= 70:
        return StressTolerance.HIGH
    if tolerance >= 40:
        return StressTolerance.MEDIUM
    return StressTolerance.LOW


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TraitScoringEngine:
    """Converts a completed answer set into a scored diagnosis.

    Usage::

        engine = TraitScoringEngine(pages=3)
        scored = engine.compute_diagnosis("user-1", answers, questions)
        scored.diagnosis.type_code      # "EL"
        scored.potential_scores[0].grade
    """

    def __init__(self, *, pages: int = 3) -> None:
        self.pages = pages

    def active_questions(self, questions: Iterable[Question]) -> list[Question]:
        """Active questions on pages ``1..pages`` in survey order."""
        active = [q for q in questions if q.is_active and 1 <= q.page <= self.pages]
        return sorted(active, key=lambda q: (q.page, q.order_number))

    def compute_diagnosis(
        self,
        user_id: str,
        answers: Iterable[Answer],
        questions: Iterable[Question],
        previous: DiagnosisResult | None = None,
    ) -> ScoredDiagnosis:
        """Score *answers* and build the user's diagnosis.

        When *previous* is given the result keeps its id (the current row
        is overwritten in place) and its version is incremented.

        Raises:
            IncompleteInputError: an active question has no answer.
            ValidationError: unknown question id, duplicate answer, score
                outside 1–7, or a THINKING question without a valid
                sub-dimension.
        """
        question_list = list(questions)
        by_id = {q.id: q for q in question_list}
        active = self.active_questions(question_list)
        _check_thinking_questions(active)

        answered: dict[str, int] = {}
        for answer in answers:
            if answer.question_id not in by_id:
                raise ActionableError.validation(
                    field_name="question_id",
                    reason=f"answer references unknown question '{answer.question_id}'",
                )
            if answer.question_id in answered:
                raise ActionableError.validation(
                    field_name="question_id",
                    reason=f"question '{answer.question_id}' answered more than once",
                )
            validate_answer_score(answer.question_id, answer.score)
            # Inactive or off-survey questions still count for duplicate detection
            answered[answer.question_id] = answer.score

        missing = [q.id for q in active if q.id not in answered]
        if missing:
            raise ActionableError.incomplete_input(user_id, missing)

        category_scores: dict[QuestionCategory, list[int]] = defaultdict(list)
        thinking_scores: dict[str, list[int]] = defaultdict(list)
        raw_sequence: list[int] = []
        for question in active:
            raw = answered[question.id]
            raw_sequence.append(raw)
            value = transform_score(raw, is_reverse=question.is_reverse)
            category_scores[question.category].append(value)
            if question.category == QuestionCategory.THINKING:
                thinking_scores[question.thinking_dimension].append(value)  # type: ignore[index]

        big_five: TraitVector = {dim: 0.0 for dim in BIG_FIVE_DIMENSIONS}
        for category, dimension in BIG_FIVE_CATEGORIES.items():
            big_five[dimension] = category_score(category_scores[category])
        thinking: TraitVector = {
            dim: category_score(thinking_scores[dim]) for dim in THINKING_DIMENSIONS
        }
        behavior = derive_behavior_pattern(big_five, thinking)
        all_values = {**big_five, **thinking, **behavior}

        type_code, type_name = classify_type(big_five, thinking)
        reliability = check_reliability(raw_sequence)
        now = utcnow()

        diagnosis = DiagnosisResult(
            id=previous.id if previous is not None else new_id(),
            user_id=user_id,
            type_code=type_code,
            type_name=type_name,
            feature_labels=feature_labels(all_values),
            reliability_status=reliability.status,
            reliability_issues=list(reliability.issues),
            stress_tolerance=stress_tolerance(big_five["neuroticism"]),
            big_five=big_five,
            thinking_pattern=thinking,
            behavior_pattern=behavior,
            version=increment_version(previous.version if previous is not None else None),
            completed_at=now,
            updated_at=now,
        )
        potential = compute_potential_scores(diagnosis.id, all_values)

        logger.info(
            "Scored diagnosis for %s — type %s, version %s, reliability %s",
            user_id,
            type_code,
            diagnosis.version,
            reliability.status,
        )
        return ScoredDiagnosis(diagnosis=diagnosis, potential_scores=potential, reliability=reliability)


def validate_answer_score(question_id: str, score: object) -> None:
    """Raise VALIDATION unless *score* is an integer on the 1–7 scale."""
    if isinstance(score, bool) or not isinstance(score, int):
        raise ActionableError.validation(
            field_name=f"answers.{question_id}",
            reason=f"score must be an integer, not {type(score).__name__}",
        )
    if not MIN_ANSWER_SCORE <= score <= MAX_ANSWER_SCORE:
        raise ActionableError.validation(
            field_name=f"answers.{question_id}",
            reason=f"score {score} is outside {MIN_ANSWER_SCORE}–{MAX_ANSWER_SCORE}",
        )


def _check_thinking_questions(questions: Iterable[Question]) -> None:
    for question in questions:
        if question.category != QuestionCategory.THINKING:
            continue
        if question.thinking_dimension not in THINKING_DIMENSIONS:
            raise ActionableError.validation(
                field_name=f"questions.{question.id}.thinking_dimension",
                reason=(
                    f"THINKING question declares '{question.thinking_dimension}' — "
                    f"expected one of {list(THINKING_DIMENSIONS)}"
                ),
            )
