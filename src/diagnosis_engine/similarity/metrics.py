"""Pairwise similarity between trait vectors.

All metrics operate on the dimensions both vectors share and return an
integer percentage in 0–100, rounded half-up.

The Euclidean metric normalizes by ``sqrt(n × max_delta²)`` with
``max_delta`` defaulting to 60, the spread of the refined 20–80 range.
Freshly scored vectors can lie further apart than that; such pairs
floor at zero.  Configure 100 to normalize over the full 0–100 scale.
"""

from __future__ import annotations

import math
from collections.abc import Mapping

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.traits import display_name, round_score

DEFAULT_MAX_DELTA = 60.0
DEFAULT_DIFFERING_THRESHOLD = 15.0


def shared_dimensions(a: Mapping[str, float], b: Mapping[str, float]) -> list[str]:
    """Dimensions present in both vectors, in *a*'s order."""
    return [dim for dim in a if dim in b]


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> int:
    """Cosine of the angle between *a* and *b*, scaled to 0–100.

    Zero when either vector has zero magnitude.
    """
    dims = shared_dimensions(a, b)
    dot = sum(a[d] * b[d] for d in dims)
    norm_a = math.sqrt(sum(a[d] ** 2 for d in dims))
    norm_b = math.sqrt(sum(b[d] ** 2 for d in dims))
    if norm_a == 0 or norm_b == 0:
        return 0
    # Identical vectors can land a hair above 1.0
    cosine = min(dot / (norm_a * norm_b), 1.0)
    return round_score(round(cosine * 100, 9))


def euclidean_similarity(
    a: Mapping[str, float],
    b: Mapping[str, float],
    max_delta: float = DEFAULT_MAX_DELTA,
) -> int:
    """``(1 − distance / max_distance) × 100``, floored at zero."""
    if max_delta <= 0:
        raise ActionableError.validation(
            field_name="max_delta",
            reason=f"is {max_delta} — must be > 0",
        )
    dims = shared_dimensions(a, b)
    if not dims:
        return 0
    distance = math.sqrt(sum((a[d] - b[d]) ** 2 for d in dims))
    max_distance = math.sqrt(len(dims) * max_delta**2)
    return round_score(round(max(0.0, (1 - distance / max_distance) * 100), 9))


def combined_similarity(
    a: Mapping[str, float],
    b: Mapping[str, float],
    max_delta: float = DEFAULT_MAX_DELTA,
) -> int:
    """Mean of cosine and Euclidean similarity."""
    cosine = cosine_similarity(a, b)
    euclidean = euclidean_similarity(a, b, max_delta)
    return round_score((cosine + euclidean) / 2)


def differing_factors(
    a: Mapping[str, float],
    b: Mapping[str, float],
    threshold: float = DEFAULT_DIFFERING_THRESHOLD,
) -> list[str]:
    """Display names of dimensions differing by at least *threshold*, largest gap first."""
    gaps = [(abs(a[d] - b[d]), d) for d in shared_dimensions(a, b)]
    flagged = [(gap, d) for gap, d in gaps if gap >= threshold]
    # Stable sort keeps declared order among equal gaps
    flagged.sort(key=lambda item: item[0], reverse=True)
    return [display_name(d) for _, d in flagged]
