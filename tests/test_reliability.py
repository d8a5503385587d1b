"""Response-pattern reliability tests.

Maps to BDD spec: TestReliabilityCheck
"""

from __future__ import annotations

import pytest

from diagnosis_engine.errors import ValidationError
from diagnosis_engine.models import ReliabilityStatus
from diagnosis_engine.scoring.reliability import (
    EXTREME_RESPONSES,
    LOW_VARIANCE,
    STRAIGHT_LINING,
    check_reliability,
    longest_identical_run,
)

# Varied answers with no issue: runs of 1, no extremes, stdev > 0.5
_VARIED = [2, 3, 4, 5, 6, 5, 4, 3, 2, 3, 4, 5, 6, 5, 4, 3]


class TestReliabilityCheck:
    """REQUIREMENT: Careless answer patterns are flagged, not silently scored.

    WHO: The reviewer deciding whether a diagnosis can be trusted
    WHAT: A run of ≥10 identical answers flags straight-lining; more than
          70% of answers at 1 or 7 flags extreme responses; population
          stdev below 0.5 flags low variance; no issue → RELIABLE,
          one → NEEDS_REVIEW, two or more → UNRELIABLE
    WHY: A user who clicked "4" ninety times gets a neutral profile that
         looks plausible unless the pattern itself is inspected
    """

    def test_varied_answers_are_reliable(self) -> None:
        """Ordinary variation raises no issue."""
        report = check_reliability(_VARIED)
        assert report.status == ReliabilityStatus.RELIABLE
        assert report.is_reliable is True
        assert report.issues == []

    def test_run_of_ten_identical_answers_is_straight_lining(self) -> None:
        """Exactly ten identical consecutive answers is enough."""
        scores = [3, 5] * 5 + [4] * 10 + [2, 6] * 5
        report = check_reliability(scores)
        assert report.longest_run == 10
        assert report.issues == [STRAIGHT_LINING]
        assert report.status == ReliabilityStatus.NEEDS_REVIEW

    def test_run_of_nine_is_not_straight_lining(self) -> None:
        """Nine identical answers in a row stay under the threshold."""
        scores = [3, 5] * 5 + [4] * 9 + [2, 6] * 5
        assert STRAIGHT_LINING not in check_reliability(scores).issues

    def test_mostly_extreme_answers_are_flagged(self) -> None:
        """Eight of ten answers at 1 or 7 exceeds the 70% limit."""
        scores = [1, 7, 1, 7, 1, 7, 1, 7, 4, 3]
        report = check_reliability(scores)
        assert report.extreme_ratio == pytest.approx(0.8)
        assert report.issues == [EXTREME_RESPONSES]

    def test_exactly_seventy_percent_extreme_is_not_flagged(self) -> None:
        """The limit is strictly greater than 70%."""
        scores = [1, 7, 1, 7, 1, 7, 1, 4, 3, 5]
        assert EXTREME_RESPONSES not in check_reliability(scores).issues

    def test_all_identical_answers_are_unreliable(self) -> None:
        """Twenty 4s straight-line and have zero variance — two issues."""
        report = check_reliability([4] * 20)
        assert report.issues == [STRAIGHT_LINING, LOW_VARIANCE]
        assert report.status == ReliabilityStatus.UNRELIABLE
        assert report.std_dev == 0

    def test_all_sevens_hit_every_heuristic(self) -> None:
        """Twenty 7s straight-line, are all extreme, and have no variance."""
        report = check_reliability([7] * 20)
        assert set(report.issues) == {STRAIGHT_LINING, EXTREME_RESPONSES, LOW_VARIANCE}
        assert report.status == ReliabilityStatus.UNRELIABLE

    def test_empty_answer_list_raises(self) -> None:
        """There is nothing to assess in an empty list."""
        with pytest.raises(ValidationError):
            check_reliability([])

    def test_longest_run_counts_consecutive_only(self) -> None:
        """Identical values separated by others do not join a run."""
        assert longest_identical_run([1, 1, 2, 1, 1, 1, 3]) == 3
        assert longest_identical_run([]) == 0
