"""Version diff tests.

Maps to BDD specs: TestVersionDiff
"""

from __future__ import annotations

import pytest

from conftest import make_diagnosis, make_proposal
from diagnosis_engine.errors import NotFoundError
from diagnosis_engine.models import (
    ExternalDiagnosis,
    ExternalDiagnosisType,
    TraitSnapshot,
    TriggerType,
)
from diagnosis_engine.persistence import InMemoryRepository
from diagnosis_engine.refinement.client import RefinementClient
from diagnosis_engine.refinement.diff import get_version_diff, label_changes, vector_changes
from diagnosis_engine.refinement.engine import RefinementEngine

USER = "u-1"


@pytest.fixture
async def applied(repo: InMemoryRepository, mock_client: RefinementClient):  # noqa: ANN201
    """One applied refinement: +3 extraversion, −12 (→ −5) openness, Bold → Calm."""
    repo.save_diagnosis(make_diagnosis(USER, labels=["Sociable", "Bold"]), expected_version=None)
    repo.add_external_diagnosis(
        ExternalDiagnosis(USER, ExternalDiagnosisType.MBTI, {"type": "ENFP", "indicators": {}})
    )
    mock_client.propose.return_value = make_proposal(  # type: ignore[attr-defined]
        deltas={"bigFive": {"extraversion": 3, "openness": -12}},
        labels=["Sociable", "Calm"],
        risk_flags=["thin interview evidence"],
    )
    outcome = await RefinementEngine(repo, mock_client).refine(USER, TriggerType.SIGNAL_A_ADDED)
    assert outcome.history is not None
    return outcome.history


class TestVersionDiff:
    """REQUIREMENT: A history row can be explained as a field-level diff.

    WHO: A reviewer asking "what did this refinement change?"
    WHAT: Added and removed labels; one change per moved dimension with
          its rounded amount; the version pair; confidence and risk flags
          from the linked audit entry; unknown ids raise NotFoundError
    WHY: Raw before/after snapshots bury a two-field change in thirty fields
    """

    async def test_labels_and_versions(self, repo: InMemoryRepository, applied) -> None:  # noqa: ANN001
        """Calm was added, Bold removed; 1.0 → 1.1."""
        diff = get_version_diff(repo, applied.id)
        assert diff.added_labels == ["Calm"]
        assert diff.removed_labels == ["Bold"]
        assert (diff.previous_version, diff.version) == ("1.0", "1.1")
        assert diff.trigger_type == TriggerType.SIGNAL_A_ADDED

    async def test_only_moved_dimensions_are_listed(
        self, repo: InMemoryRepository, applied  # noqa: ANN001
    ) -> None:
        """Extraversion +3.0 and openness −5.0; nothing else."""
        diff = get_version_diff(repo, applied.id)
        changes = {(c.vector, c.dimension): c for c in diff.changes}
        assert set(changes) == {("bigFive", "extraversion"), ("bigFive", "openness")}
        assert changes[("bigFive", "extraversion")].change_amount == 3.0
        assert changes[("bigFive", "openness")].previous_value == 50
        assert changes[("bigFive", "openness")].new_value == 45.0
        assert changes[("bigFive", "openness")].change_amount == -5.0

    async def test_confidence_and_risk_flags_come_from_audit(
        self, repo: InMemoryRepository, applied  # noqa: ANN001
    ) -> None:
        """The linked audit entry supplies confidence and risk flags."""
        diff = get_version_diff(repo, applied.id)
        assert diff.confidence == 80
        assert diff.risk_flags == ["thin interview evidence"]

    async def test_serialized_field_names(self, repo: InMemoryRepository, applied) -> None:  # noqa: ANN001
        """Changes serialize with a dotted vector.dimension field."""
        data = get_version_diff(repo, applied.id).to_dict()
        assert "bigFive.extraversion" in {change["field"] for change in data["changes"]}

    def test_unknown_history_raises(self, repo: InMemoryRepository) -> None:
        """A missing history id is NotFoundError."""
        with pytest.raises(NotFoundError):
            get_version_diff(repo, "no-such-history")


class TestDiffHelpers:
    """REQUIREMENT: Label and vector comparisons are order-preserving and rounded.

    WHO: get_version_diff
    WHAT: Labels keep each list's order; change amounts round to one decimal
    WHY: Float residue like 3.2999999 is noise in a reviewer's screen
    """

    def test_label_changes_preserve_order(self) -> None:
        """Added follows the new list, removed the old one."""
        assert label_changes(["A", "B", "C"], ["C", "D", "A", "E"]) == (["D", "E"], ["B"])

    def test_change_amount_is_rounded(self) -> None:
        """53.3 − 50.0 reports as 3.3."""
        before = make_diagnosis().snapshot()
        after = TraitSnapshot(
            feature_labels=[],
            big_five={**before.big_five, "openness": 53.3},
            thinking_pattern=dict(before.thinking_pattern),
            behavior_pattern=dict(before.behavior_pattern),
        )
        (change,) = vector_changes(before, after)
        assert change.change_amount == 3.3
