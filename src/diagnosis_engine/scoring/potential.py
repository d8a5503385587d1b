"""Job-type potential scores.

Each job profile is a table of dimension → weight.  A negative weight
means the dimension counts inverted (``100 − value``), e.g. low
neuroticism helps in accounting.  The score is the weighted mean over
``Σ|w|`` rounded half-up, then graded A ≥ 75, B ≥ 60, C ≥ 45, else D.
"""

from __future__ import annotations

from collections.abc import Mapping

from diagnosis_engine.models import Grade, PotentialScore
from diagnosis_engine.traits import NEUTRAL_VALUE, round_score

JOB_PROFILES: dict[str, dict[str, float]] = {
    "Sales": {
        "extraversion": 0.3,
        "agreeableness": 0.2,
        "conscientiousness": 0.2,
        "efficiency": 0.15,
        "friendliness": 0.15,
    },
    "Engineer": {
        "openness": 0.25,
        "conscientiousness": 0.25,
        "leader": 0.2,
        "analyst": 0.2,
        "knowledge": 0.1,
    },
    "Marketing": {
        "openness": 0.25,
        "extraversion": 0.2,
        "supporter": 0.2,
        "challenge": 0.2,
        "knowledge": 0.15,
    },
    "Human Resources": {
        "agreeableness": 0.3,
        "extraversion": 0.2,
        "friendliness": 0.2,
        "conscientiousness": 0.15,
        "energetic": 0.15,
    },
    "Accounting & Finance": {
        "conscientiousness": 0.3,
        "leader": 0.25,
        "analyst": 0.2,
        "efficiency": 0.15,
        "neuroticism": -0.1,
    },
    "Designer": {
        "openness": 0.35,
        "energetic": 0.2,
        "challenge": 0.2,
        "knowledge": 0.15,
        "appearance": 0.1,
    },
    "Manager": {
        "extraversion": 0.2,
        "conscientiousness": 0.2,
        "supporter": 0.2,
        "agreeableness": 0.2,
        "efficiency": 0.2,
    },
    "Customer Support": {
        "agreeableness": 0.3,
        "friendliness": 0.25,
        "conscientiousness": 0.2,
        "extraversion": 0.15,
        "neuroticism": -0.1,
    },
}

GRADE_THRESHOLDS: tuple[tuple[int, Grade], ...] = (
    (75, Grade.A),
    (60, Grade.B),
    (45, Grade.C),
)


def grade_for(score: float) -> Grade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return Grade.D


def weighted_score(values: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """Weighted mean of *values*; absent dimensions count as neutral (50)."""
    total = 0.0
    total_weight = 0.0
    for dimension, weight in weights.items():
        value = values.get(dimension, NEUTRAL_VALUE)
        if weight < 0:
            total += (100 - value) * abs(weight)
        else:
            total += value * weight
        total_weight += abs(weight)
    if total_weight == 0:
        return round_score(NEUTRAL_VALUE)
    # Float weights (0.15 + 0.15 ...) leave residue that would skew half-up rounding
    return round_score(round(total / total_weight, 9))


def compute_potential_scores(
    diagnosis_result_id: str,
    values: Mapping[str, float],
    profiles: Mapping[str, Mapping[str, float]] = JOB_PROFILES,
) -> list[PotentialScore]:
    """One :class:`PotentialScore` per profile from a flat dimension → value map."""
    scores: list[PotentialScore] = []
    for job_type, weights in profiles.items():
        score = weighted_score(values, weights)
        scores.append(
            PotentialScore(
                diagnosis_result_id=diagnosis_result_id,
                job_type=job_type,
                grade=grade_for(score),
                score=score,
            )
        )
    return scores
