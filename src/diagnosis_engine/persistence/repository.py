"""Repository contracts the engines depend on.

The engines never reach a database directly; they receive an object
satisfying :class:`Repository` at construction.  Relational backends
live outside this package; :class:`~diagnosis_engine.persistence.memory.InMemoryRepository`
is the reference implementation used by the CLI and the tests.

Contract notes shared by every implementation:

- Records returned are copies; mutating them does not change stored state.
- ``save_diagnosis`` enforces an optimistic version token.  Pass the
  version you read (``None`` when creating); a mismatch raises
  :class:`~diagnosis_engine.errors.ConcurrencyConflict`.
- ``transaction()`` is all-or-nothing: any exception inside the block
  leaves stored state exactly as it was before the block.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable
    from contextlib import AbstractContextManager

    from diagnosis_engine.models import (
        Answer,
        AuditLogEntry,
        BrushUpHistory,
        DiagnosisResult,
        ExternalDiagnosis,
        InterviewEvaluation,
        PotentialScore,
        Question,
        SimilarityScore,
    )


class SurveyRepository(Protocol):
    def list_questions(self, *, active_only: bool = False) -> list[Question]: ...

    def add_questions(self, questions: Iterable[Question]) -> None: ...

    def upsert_answers(self, answers: Iterable[Answer]) -> None: ...

    def list_answers(self, user_id: str) -> list[Answer]: ...


class DiagnosisRepository(Protocol):
    def get_current_diagnosis(self, user_id: str) -> DiagnosisResult | None: ...

    def get_diagnosis(self, diagnosis_id: str) -> DiagnosisResult | None: ...

    def save_diagnosis(
        self, diagnosis: DiagnosisResult, *, expected_version: str | None
    ) -> None: ...

    def replace_potential_scores(
        self, diagnosis_result_id: str, scores: Iterable[PotentialScore]
    ) -> None: ...

    def list_potential_scores(self, diagnosis_result_id: str) -> list[PotentialScore]: ...


class RefinementRepository(Protocol):
    def append_history(self, history: BrushUpHistory) -> None: ...

    def get_history(self, history_id: str) -> BrushUpHistory | None: ...

    def list_history(self, diagnosis_result_id: str) -> list[BrushUpHistory]:
        """Newest first."""
        ...

    def append_audit(self, entry: AuditLogEntry) -> None: ...

    def list_audit(self, diagnosis_result_id: str) -> list[AuditLogEntry]: ...

    def get_audit_for_history(self, history_id: str) -> AuditLogEntry | None: ...

    def add_external_diagnosis(self, diagnosis: ExternalDiagnosis) -> None: ...

    def list_external_diagnoses(self, user_id: str) -> list[ExternalDiagnosis]: ...

    def add_evaluation(self, evaluation: InterviewEvaluation) -> None: ...

    def list_recent_evaluations(self, user_id: str, limit: int) -> list[InterviewEvaluation]:
        """Most recent first, at most *limit* rows."""
        ...


class SimilarityRepository(Protocol):
    def upsert_similarity(self, score: SimilarityScore) -> None: ...

    def list_similar(self, user_id: str, min_similarity: int) -> list[SimilarityScore]:
        """Rows for *user_id* at or above *min_similarity*, highest first."""
        ...

    def delete_similarity_for_user(self, user_id: str) -> int:
        """Delete rows in either direction involving *user_id*; return the count."""
        ...

    def set_cohort_members(self, cohort_id: str, user_ids: Iterable[str]) -> None: ...

    def list_cohort_members(self, cohort_id: str) -> list[str]: ...


@runtime_checkable
class Repository(
    SurveyRepository,
    DiagnosisRepository,
    RefinementRepository,
    SimilarityRepository,
    Protocol,
):
    """Everything the engines need from persistence."""

    def transaction(self) -> AbstractContextManager[None]: ...
