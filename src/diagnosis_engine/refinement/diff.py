"""Field-level diff of one refinement.

A :class:`VersionDiff` compares the previous and updated snapshots of a
BrushUpHistory row: which feature labels were added or removed, and how
far each dimension moved.  Confidence and risk flags come from the audit
entry linked to the history row by ``brush_up_history_id``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.traits import VECTOR_DIMENSIONS, round_half_up
from diagnosis_engine.versioning import previous_version

if TYPE_CHECKING:
    from diagnosis_engine.models import TraitSnapshot, TriggerType
    from diagnosis_engine.persistence.repository import Repository


@dataclass
class FieldChange:
    vector: str
    dimension: str
    previous_value: float
    new_value: float
    change_amount: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": f"{self.vector}.{self.dimension}",
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "changeAmount": self.change_amount,
        }


@dataclass
class VersionDiff:
    version: str
    previous_version: str
    trigger_type: TriggerType
    ai_reasoning: str
    created_at: datetime
    added_labels: list[str] = field(default_factory=list)
    removed_labels: list[str] = field(default_factory=list)
    changes: list[FieldChange] = field(default_factory=list)
    confidence: float = 0.0
    risk_flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "previousVersion": self.previous_version,
            "triggerType": str(self.trigger_type),
            "aiReasoning": self.ai_reasoning,
            "createdAt": self.created_at.isoformat(),
            "addedLabels": list(self.added_labels),
            "removedLabels": list(self.removed_labels),
            "changes": [change.to_dict() for change in self.changes],
            "confidence": self.confidence,
            "riskFlags": list(self.risk_flags),
        }


def label_changes(previous: list[str], updated: list[str]) -> tuple[list[str], list[str]]:
    """Return ``(added, removed)`` preserving each list's order."""
    added = [label for label in updated if label not in previous]
    removed = [label for label in previous if label not in updated]
    return added, removed


def vector_changes(previous: TraitSnapshot, updated: TraitSnapshot) -> list[FieldChange]:
    changes: list[FieldChange] = []
    before_vectors = previous.vectors()
    after_vectors = updated.vectors()
    for vector_name, dimensions in VECTOR_DIMENSIONS.items():
        before = before_vectors[vector_name]
        after = after_vectors[vector_name]
        for dim in dimensions:
            old = before.get(dim)
            new = after.get(dim)
            if old is None or new is None or old == new:
                continue
            changes.append(
                FieldChange(
                    vector=vector_name,
                    dimension=dim,
                    previous_value=old,
                    new_value=new,
                    change_amount=round_half_up(new - old, 1),
                )
            )
    return changes


def get_version_diff(repository: Repository, history_id: str) -> VersionDiff:
    """Diff for one BrushUpHistory row.

    Raises :class:`~diagnosis_engine.errors.NotFoundError` for an
    unknown *history_id*.
    """
    history = repository.get_history(history_id)
    if history is None:
        raise ActionableError.not_found("brush-up history", history_id)

    added, removed = label_changes(
        history.previous_data.feature_labels, history.updated_data.feature_labels
    )
    audit = repository.get_audit_for_history(history.id)
    risk_flags: list[str] = []
    if audit is not None and audit.output_data:
        risk_flags = list(audit.output_data.get("riskFlags") or [])

    return VersionDiff(
        version=history.version,
        previous_version=previous_version(history.version),
        trigger_type=history.trigger_type,
        ai_reasoning=history.ai_reasoning,
        created_at=history.created_at,
        added_labels=added,
        removed_labels=removed,
        changes=vector_changes(history.previous_data, history.updated_data),
        confidence=audit.confidence if audit is not None else 0.0,
        risk_flags=risk_flags,
    )
