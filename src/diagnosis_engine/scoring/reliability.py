"""Response-pattern reliability check.

Three heuristics flag answer sets that are unlikely to reflect the
respondent's real traits:

- **Straight-lining** — a run of ten or more identical consecutive answers
- **Extremity** — more than 70% of answers at the scale ends (1 or 7)
- **Low variance** — population standard deviation below 0.5

No issue → RELIABLE, one issue → NEEDS_REVIEW, two or more → UNRELIABLE.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, field

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.models import ReliabilityStatus

STRAIGHT_LINE_RUN = 10
EXTREME_RATIO_LIMIT = 0.7
MIN_STD_DEV = 0.5
EXTREME_SCORES = frozenset({1, 7})

STRAIGHT_LINING = "straight_lining"
EXTREME_RESPONSES = "extreme_responses"
LOW_VARIANCE = "low_variance"


@dataclass
class ReliabilityReport:
    """Outcome of :func:`check_reliability`."""

    is_reliable: bool
    status: ReliabilityStatus
    issues: list[str] = field(default_factory=list)
    longest_run: int = 0
    extreme_ratio: float = 0.0
    std_dev: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "isReliable": self.is_reliable,
            "status": self.status.value,
            "issues": list(self.issues),
            "longestRun": self.longest_run,
            "extremeRatio": self.extreme_ratio,
            "stdDev": self.std_dev,
        }


def longest_identical_run(scores: list[int]) -> int:
    longest = 0
    current = 0
    previous: int | None = None
    for score in scores:
        current = current + 1 if score == previous else 1
        previous = score
        longest = max(longest, current)
    return longest


def check_reliability(scores: list[int]) -> ReliabilityReport:
    """Classify an ordered list of raw 1–7 answers.

    Raises :class:`~diagnosis_engine.errors.ValidationError` on an empty list.
    """
    if not scores:
        raise ActionableError.validation(
            field_name="scores",
            reason="cannot assess reliability of an empty answer list",
        )

    issues: list[str] = []

    longest_run = longest_identical_run(scores)
    if longest_run >= STRAIGHT_LINE_RUN:
        issues.append(STRAIGHT_LINING)

    extreme_ratio = sum(1 for s in scores if s in EXTREME_SCORES) / len(scores)
    if extreme_ratio > EXTREME_RATIO_LIMIT:
        issues.append(EXTREME_RESPONSES)

    std_dev = statistics.pstdev(scores)
    if std_dev < MIN_STD_DEV:
        issues.append(LOW_VARIANCE)

    if not issues:
        status = ReliabilityStatus.RELIABLE
    elif len(issues) >= 2:
        status = ReliabilityStatus.UNRELIABLE
    else:
        status = ReliabilityStatus.NEEDS_REVIEW

    return ReliabilityReport(
        is_reliable=not issues,
        status=status,
        issues=issues,
        longest_run=longest_run,
        extreme_ratio=extreme_ratio,
        std_dev=std_dev,
    )
