"""Similarity metric tests.

Maps to BDD specs: TestCosineSimilarity, TestEuclideanSimilarity,
TestCombinedSimilarity, TestDifferingFactors
"""

from __future__ import annotations

import pytest

from conftest import NEUTRAL_BIG_FIVE
from diagnosis_engine.errors import ValidationError
from diagnosis_engine.similarity.metrics import (
    combined_similarity,
    cosine_similarity,
    differing_factors,
    euclidean_similarity,
)

_ZERO = {dim: 0.0 for dim in NEUTRAL_BIG_FIVE}
_HIGH_E = {**NEUTRAL_BIG_FIVE, "extraversion": 80}


class TestCosineSimilarity:
    """REQUIREMENT: Cosine similarity measures profile shape on a 0–100 scale.

    WHO: The similarity engine comparing two users
    WHAT: Identical vectors score 100; a zero-magnitude vector scores 0;
          the result is rounded half-up
    WHY: Division by a zero norm would crash a cohort scan on one blank profile
    """

    def test_identical_vectors_score_100(self) -> None:
        """The same profile is 100% similar to itself."""
        assert cosine_similarity(NEUTRAL_BIG_FIVE, dict(NEUTRAL_BIG_FIVE)) == 100

    def test_zero_vector_scores_zero(self) -> None:
        """A zero-magnitude vector has no direction to compare."""
        assert cosine_similarity(_ZERO, NEUTRAL_BIG_FIVE) == 0
        assert cosine_similarity(NEUTRAL_BIG_FIVE, _ZERO) == 0

    def test_known_pair(self) -> None:
        """Extraversion 80 against a neutral profile is 98."""
        assert cosine_similarity(_HIGH_E, NEUTRAL_BIG_FIVE) == 98


class TestEuclideanSimilarity:
    """REQUIREMENT: Euclidean similarity measures absolute distance on a 0–100 scale.

    WHO: The similarity engine comparing two users
    WHAT: The distance is normalized by sqrt(n × max_delta²), max_delta 60 by
          default, and floored at 0; max_delta must be positive; no shared
          dimension scores 0
    WHY: Cosine alone calls a uniformly low and a uniformly high profile identical
    """

    def test_identical_vectors_score_100(self) -> None:
        """Zero distance is 100%."""
        assert euclidean_similarity(NEUTRAL_BIG_FIVE, NEUTRAL_BIG_FIVE) == 100

    def test_known_pair_with_default_spread(self) -> None:
        """A 30-point gap on one of five dimensions is 78 with max_delta 60."""
        assert euclidean_similarity(_HIGH_E, NEUTRAL_BIG_FIVE) == 78

    def test_wider_spread_penalizes_less(self) -> None:
        """The same gap with max_delta 100 is 87."""
        assert euclidean_similarity(_HIGH_E, NEUTRAL_BIG_FIVE, max_delta=100) == 87

    def test_maximal_distance_scores_zero(self) -> None:
        """All-0 against all-100 is as far apart as vectors get."""
        all_high = {dim: 100.0 for dim in NEUTRAL_BIG_FIVE}
        assert euclidean_similarity(_ZERO, all_high) == 0

    def test_uniform_profiles_differ_where_cosine_agrees(self) -> None:
        """All-20 and all-80 are parallel but as far apart as refined vectors get."""
        low = {dim: 20.0 for dim in NEUTRAL_BIG_FIVE}
        high = {dim: 80.0 for dim in NEUTRAL_BIG_FIVE}
        assert cosine_similarity(low, high) == 100
        assert euclidean_similarity(low, high) == 0
        assert euclidean_similarity(low, high, max_delta=100) == 40

    def test_non_positive_max_delta_raises(self) -> None:
        """max_delta 0 would divide by zero."""
        with pytest.raises(ValidationError):
            euclidean_similarity(NEUTRAL_BIG_FIVE, NEUTRAL_BIG_FIVE, max_delta=0)

    def test_no_shared_dimensions_scores_zero(self) -> None:
        """Disjoint vectors have nothing to compare."""
        assert euclidean_similarity({"a": 1.0}, {"b": 1.0}) == 0


class TestCombinedSimilarity:
    """REQUIREMENT: The reported similarity is the mean of cosine and Euclidean.

    WHO: Users browsing "people like you"
    WHAT: combined = round_half_up((cosine + euclidean) / 2)
    WHY: Each metric alone has a blind spot the other covers
    """

    def test_identical_vectors_score_100(self) -> None:
        """Both halves are 100."""
        assert combined_similarity(NEUTRAL_BIG_FIVE, NEUTRAL_BIG_FIVE) == 100

    def test_half_point_rounds_up(self) -> None:
        """(98 + 87) / 2 = 92.5 reports as 93 with max_delta 100."""
        assert combined_similarity(_HIGH_E, NEUTRAL_BIG_FIVE, max_delta=100) == 93

    def test_default_spread(self) -> None:
        """(98 + 78) / 2 = 88."""
        assert combined_similarity(_HIGH_E, NEUTRAL_BIG_FIVE) == 88

    def test_zero_vector_against_neutral(self) -> None:
        """Cosine 0 and Euclidean 17 combine to 8.5, reported as 9."""
        assert combined_similarity(_ZERO, NEUTRAL_BIG_FIVE) == 9


class TestDifferingFactors:
    """REQUIREMENT: Differing factors name the dimensions that set two users apart.

    WHO: Users reading why a peer is similar but not identical
    WHAT: Dimensions whose gap is ≥ threshold, by display name,
          largest gap first, declared order among ties
    WHY: "93% similar" is more useful with "mostly differs in Openness"
    """

    def test_identical_vectors_have_no_differing_factors(self) -> None:
        """No gap, no factor."""
        assert differing_factors(NEUTRAL_BIG_FIVE, NEUTRAL_BIG_FIVE) == []

    def test_largest_gap_first_with_stable_ties(self) -> None:
        """Openness (30) leads; extraversion and neuroticism (20) keep declared order."""
        other = {**NEUTRAL_BIG_FIVE, "openness": 80, "extraversion": 30, "neuroticism": 70}
        assert differing_factors(NEUTRAL_BIG_FIVE, other) == [
            "Openness",
            "Extraversion",
            "Neuroticism",
        ]

    def test_threshold_is_inclusive(self) -> None:
        """A gap of exactly 15 counts; 14 does not."""
        assert differing_factors(NEUTRAL_BIG_FIVE, {**NEUTRAL_BIG_FIVE, "agreeableness": 65}) == [
            "Agreeableness"
        ]
        assert differing_factors(NEUTRAL_BIG_FIVE, {**NEUTRAL_BIG_FIVE, "agreeableness": 64}) == []

    def test_custom_threshold(self) -> None:
        """A higher threshold drops smaller gaps."""
        assert differing_factors(_HIGH_E, NEUTRAL_BIG_FIVE, threshold=40) == []
