"""Declared trait dimensions and vector validation.

Every trait vector the engine reads or writes belongs to one of three
named vector types, each with a fixed, ordered dimension set.  Vectors
are validated whenever they cross a boundary (repository reads, AI
proposals, CLI input) instead of being trusted as free-form mappings.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from diagnosis_engine.errors import ActionableError

TraitVector = dict[str, float]

BIG_FIVE = "bigFive"
THINKING_PATTERN = "thinkingPattern"
BEHAVIOR_PATTERN = "behaviorPattern"

BIG_FIVE_DIMENSIONS: tuple[str, ...] = (
    "extraversion",
    "openness",
    "agreeableness",
    "conscientiousness",
    "neuroticism",
)

# ``leader`` is the logical dimension used for type classification
THINKING_DIMENSIONS: tuple[str, ...] = ("leader", "analyst", "supporter", "energetic")

BEHAVIOR_DIMENSIONS: tuple[str, ...] = (
    "efficiency",
    "friendliness",
    "knowledge",
    "appearance",
    "challenge",
)

VECTOR_DIMENSIONS: dict[str, tuple[str, ...]] = {
    BIG_FIVE: BIG_FIVE_DIMENSIONS,
    THINKING_PATTERN: THINKING_DIMENSIONS,
    BEHAVIOR_PATTERN: BEHAVIOR_DIMENSIONS,
}

DISPLAY_NAMES: dict[str, str] = {
    "extraversion": "Extraversion",
    "openness": "Openness",
    "agreeableness": "Agreeableness",
    "conscientiousness": "Conscientiousness",
    "neuroticism": "Neuroticism",
    "leader": "Leader",
    "analyst": "Analyst",
    "supporter": "Supporter",
    "energetic": "Energetic",
    "efficiency": "Efficiency",
    "friendliness": "Friendliness",
    "knowledge": "Knowledge",
    "appearance": "Appearance",
    "challenge": "Challenge",
}

MIN_VALUE = 0.0
MAX_VALUE = 100.0
NEUTRAL_VALUE = 50.0


def display_name(dimension: str) -> str:
    """Human-readable name for *dimension*; unknown names pass through."""
    return DISPLAY_NAMES.get(dimension, dimension)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round *value* half away from zero at *ndigits* decimals.

    Python's built-in :func:`round` uses banker's rounding, which would
    turn a 62.5 category score into 62 instead of 63.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def round_score(value: float) -> int:
    """Round half-up to the nearest integer."""
    return int(round_half_up(value))


def validate_vector(vector_name: str, vector: Mapping[str, object]) -> TraitVector:
    """Validate *vector* against the declared dimensions of *vector_name*.

    Returns a fresh dict of floats in declared dimension order.

    Raises :class:`~diagnosis_engine.errors.ValidationError` for an
    unknown vector name, unknown or missing dimensions, and non-numeric,
    non-finite, or out-of-range values.
    """
    dimensions = VECTOR_DIMENSIONS.get(vector_name)
    if dimensions is None:
        raise ActionableError.validation(
            field_name=vector_name,
            reason=f"unknown vector type — expected one of {sorted(VECTOR_DIMENSIONS)}",
        )
    if not isinstance(vector, Mapping):
        raise ActionableError.validation(
            field_name=vector_name,
            reason=f"must be a mapping of dimension → score, not {type(vector).__name__}",
        )

    unknown = sorted(set(vector) - set(dimensions))
    if unknown:
        raise ActionableError.validation(
            field_name=vector_name,
            reason=f"unknown dimension(s) {unknown}",
            suggestion=f"Use only the declared dimensions: {list(dimensions)}",
        )
    missing = [dim for dim in dimensions if dim not in vector]
    if missing:
        raise ActionableError.validation(
            field_name=vector_name,
            reason=f"missing dimension(s) {missing}",
        )

    validated: TraitVector = {}
    for dim in dimensions:
        raw = vector[dim]
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise ActionableError.validation(
                field_name=f"{vector_name}.{dim}",
                reason=f"must be a number, not {type(raw).__name__}",
            )
        value = float(raw)
        if not math.isfinite(value) or not MIN_VALUE <= value <= MAX_VALUE:
            raise ActionableError.validation(
                field_name=f"{vector_name}.{dim}",
                reason=f"is {raw} — must be within [{MIN_VALUE:g}, {MAX_VALUE:g}]",
            )
        validated[dim] = value
    return validated
