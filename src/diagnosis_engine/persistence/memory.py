"""Thread-safe in-memory repository.

All state sits in one :class:`_State` guarded by a re-entrant lock, so
cohort-matrix writes from worker threads and engine calls from the event
loop never interleave inside a single operation.  ``transaction()``
holds the lock for the whole block.  Inside it every write first records
the row it replaces in an undo log (appends record the table length), and
a block that raises is undone from that log.  Rollback cost follows the
rows a block wrote, not the size of the store.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.versioning import version_key

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Iterator

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

logger = logging.getLogger(__name__)

# Undo-log markers: a row that did not exist, and a list table's length
_MISSING = object()
_LENGTH = object()


@dataclass
class _State:
    questions: dict[str, Question] = field(default_factory=dict)
    answers: dict[tuple[str, str], Answer] = field(default_factory=dict)
    diagnoses: dict[str, DiagnosisResult] = field(default_factory=dict)
    current_by_user: dict[str, str] = field(default_factory=dict)
    potential_scores: dict[str, list[PotentialScore]] = field(default_factory=dict)
    history: list[BrushUpHistory] = field(default_factory=list)
    audit: list[AuditLogEntry] = field(default_factory=list)
    similarity: dict[tuple[str, str], SimilarityScore] = field(default_factory=dict)
    external_diagnoses: list[ExternalDiagnosis] = field(default_factory=list)
    evaluations: list[InterviewEvaluation] = field(default_factory=list)
    cohorts: dict[str, list[str]] = field(default_factory=dict)


class InMemoryRepository:
    """Reference :class:`~diagnosis_engine.persistence.repository.Repository`.

    Usage::

        repo = InMemoryRepository()
        repo.add_questions(questions)
        with repo.transaction():
            repo.save_diagnosis(diagnosis, expected_version=None)
            repo.replace_potential_scores(diagnosis.id, scores)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = _State()
        self._undo: dict[tuple[str, Hashable], Any] | None = None

    # -- Transactions --------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing block; nested blocks join the outermost one."""
        with self._lock:
            outermost = self._undo is None
            if outermost:
                self._undo = {}
            try:
                yield
            except BaseException:
                if outermost and self._undo:
                    self._rollback(self._undo)
                raise
            finally:
                if outermost:
                    self._undo = None

    def _remember(self, table: str, key: Hashable) -> None:
        """Record a row's pre-transaction value; only the first write counts."""
        if self._undo is not None and (table, key) not in self._undo:
            self._undo[(table, key)] = getattr(self._state, table).get(key, _MISSING)

    def _remember_length(self, table: str) -> None:
        if self._undo is not None and (table, _LENGTH) not in self._undo:
            self._undo[(table, _LENGTH)] = len(getattr(self._state, table))

    def _rollback(self, undo: dict[tuple[str, Hashable], Any]) -> None:
        for (table, key), previous in undo.items():
            rows = getattr(self._state, table)
            if key is _LENGTH:
                del rows[previous:]
            elif previous is _MISSING:
                rows.pop(key, None)
            else:
                rows[key] = previous
        logger.debug("Transaction rolled back (%d rows restored)", len(undo))

    # -- Survey --------------------------------------------------------------

    def add_questions(self, questions: Iterable[Question]) -> None:
        with self._lock:
            for question in questions:
                self._remember("questions", question.id)
                self._state.questions[question.id] = copy.deepcopy(question)

    def list_questions(self, *, active_only: bool = False) -> list[Question]:
        with self._lock:
            questions = [
                q for q in self._state.questions.values() if q.is_active or not active_only
            ]
            ordered = sorted(questions, key=lambda q: (q.page, q.order_number))
            return copy.deepcopy(ordered)

    def upsert_answers(self, answers: Iterable[Answer]) -> None:
        with self._lock:
            for answer in answers:
                key = (answer.user_id, answer.question_id)
                self._remember("answers", key)
                self._state.answers[key] = copy.deepcopy(answer)

    def list_answers(self, user_id: str) -> list[Answer]:
        with self._lock:
            return [
                copy.deepcopy(a) for (uid, _), a in self._state.answers.items() if uid == user_id
            ]

    # -- Diagnosis -----------------------------------------------------------

    def get_current_diagnosis(self, user_id: str) -> DiagnosisResult | None:
        with self._lock:
            diagnosis_id = self._state.current_by_user.get(user_id)
            if diagnosis_id is None:
                return None
            return copy.deepcopy(self._state.diagnoses[diagnosis_id])

    def get_diagnosis(self, diagnosis_id: str) -> DiagnosisResult | None:
        with self._lock:
            found = self._state.diagnoses.get(diagnosis_id)
            return copy.deepcopy(found) if found is not None else None

    def save_diagnosis(self, diagnosis: DiagnosisResult, *, expected_version: str | None) -> None:
        """Insert or overwrite the user's current diagnosis.

        Raises :class:`~diagnosis_engine.errors.ConcurrencyConflict` when
        the stored version differs from *expected_version*.
        """
        with self._lock:
            current_id = self._state.current_by_user.get(diagnosis.user_id)
            stored = self._state.diagnoses.get(current_id) if current_id else None
            actual_version = stored.version if stored is not None else None
            if actual_version != expected_version:
                raise ActionableError.concurrency_conflict(
                    diagnosis_id=diagnosis.id,
                    expected_version=expected_version,
                    actual_version=actual_version,
                )
            if stored is not None and stored.id != diagnosis.id:
                raise ActionableError.validation(
                    field_name="diagnosis.id",
                    reason=(
                        f"user '{diagnosis.user_id}' already has diagnosis '{stored.id}' — "
                        "the current row is updated in place"
                    ),
                )
            self._remember("diagnoses", diagnosis.id)
            self._remember("current_by_user", diagnosis.user_id)
            self._state.diagnoses[diagnosis.id] = copy.deepcopy(diagnosis)
            self._state.current_by_user[diagnosis.user_id] = diagnosis.id

    def replace_potential_scores(
        self, diagnosis_result_id: str, scores: Iterable[PotentialScore]
    ) -> None:
        with self._lock:
            self._remember("potential_scores", diagnosis_result_id)
            self._state.potential_scores[diagnosis_result_id] = copy.deepcopy(list(scores))

    def list_potential_scores(self, diagnosis_result_id: str) -> list[PotentialScore]:
        with self._lock:
            return copy.deepcopy(self._state.potential_scores.get(diagnosis_result_id, []))

    # -- Refinement trail ----------------------------------------------------

    def append_history(self, history: BrushUpHistory) -> None:
        with self._lock:
            self._remember_length("history")
            self._state.history.append(copy.deepcopy(history))

    def get_history(self, history_id: str) -> BrushUpHistory | None:
        with self._lock:
            for row in self._state.history:
                if row.id == history_id:
                    return copy.deepcopy(row)
            return None

    def list_history(self, diagnosis_result_id: str) -> list[BrushUpHistory]:
        with self._lock:
            rows = [h for h in self._state.history if h.diagnosis_result_id == diagnosis_result_id]
            # Stable sort over reversed append order: equal versions stay newest first
            rows = sorted(reversed(rows), key=lambda h: version_key(h.version), reverse=True)
            return copy.deepcopy(rows)

    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._remember_length("audit")
            self._state.audit.append(copy.deepcopy(entry))

    def list_audit(self, diagnosis_result_id: str) -> list[AuditLogEntry]:
        with self._lock:
            return copy.deepcopy(
                [e for e in self._state.audit if e.diagnosis_result_id == diagnosis_result_id]
            )

    def get_audit_for_history(self, history_id: str) -> AuditLogEntry | None:
        with self._lock:
            for entry in self._state.audit:
                if entry.brush_up_history_id == history_id:
                    return copy.deepcopy(entry)
            return None

    # -- External signals ----------------------------------------------------

    def add_external_diagnosis(self, diagnosis: ExternalDiagnosis) -> None:
        with self._lock:
            self._remember_length("external_diagnoses")
            self._state.external_diagnoses.append(copy.deepcopy(diagnosis))

    def list_external_diagnoses(self, user_id: str) -> list[ExternalDiagnosis]:
        with self._lock:
            return copy.deepcopy(
                [d for d in self._state.external_diagnoses if d.user_id == user_id]
            )

    def add_evaluation(self, evaluation: InterviewEvaluation) -> None:
        with self._lock:
            self._remember_length("evaluations")
            self._state.evaluations.append(copy.deepcopy(evaluation))

    def list_recent_evaluations(self, user_id: str, limit: int) -> list[InterviewEvaluation]:
        with self._lock:
            rows = [e for e in self._state.evaluations if e.user_id == user_id]
            rows.sort(key=lambda e: e.created_at, reverse=True)
            return copy.deepcopy(rows[:limit])

    # -- Similarity cache ----------------------------------------------------

    def upsert_similarity(self, score: SimilarityScore) -> None:
        with self._lock:
            key = (score.user_id, score.similar_user_id)
            self._remember("similarity", key)
            self._state.similarity[key] = copy.deepcopy(score)

    def list_similar(self, user_id: str, min_similarity: int) -> list[SimilarityScore]:
        with self._lock:
            rows = [
                s
                for (uid, _), s in self._state.similarity.items()
                if uid == user_id and s.similarity_percentage >= min_similarity
            ]
            rows.sort(key=lambda s: s.similarity_percentage, reverse=True)
            return copy.deepcopy(rows)

    def delete_similarity_for_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [key for key in self._state.similarity if user_id in key]
            for key in doomed:
                self._remember("similarity", key)
                del self._state.similarity[key]
            return len(doomed)

    # -- Cohorts -------------------------------------------------------------

    def set_cohort_members(self, cohort_id: str, user_ids: Iterable[str]) -> None:
        with self._lock:
            self._remember("cohorts", cohort_id)
            self._state.cohorts[cohort_id] = list(dict.fromkeys(user_ids))

    def list_cohort_members(self, cohort_id: str) -> list[str]:
        with self._lock:
            return list(self._state.cohorts.get(cohort_id, []))
