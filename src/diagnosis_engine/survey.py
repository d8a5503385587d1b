"""Survey answer collection and completion.

:class:`DiagnosisService` is the persisting wrapper around the pure
:class:`~diagnosis_engine.scoring.engine.TraitScoringEngine`:

- ``submit_answers`` validates and upserts one page of answers
- ``get_progress`` reports which pages are complete
- ``complete_survey`` scores the full answer set and writes the
  diagnosis plus its potential scores atomically

Completion is serialized per user through the shared
:class:`~diagnosis_engine.locks.UserLocks`, and the write carries the
version read at the start so a racing refinement cannot be overwritten
silently.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.events import notify_vectors_changed
from diagnosis_engine.locks import UserLocks
from diagnosis_engine.models import Answer
from diagnosis_engine.scoring.engine import TraitScoringEngine, validate_answer_score
from diagnosis_engine.scoring.reliability import ReliabilityReport, check_reliability

if TYPE_CHECKING:
    from collections.abc import Mapping

    from diagnosis_engine.events import VectorChangeListener
    from diagnosis_engine.persistence.repository import Repository
    from diagnosis_engine.scoring.engine import ScoredDiagnosis

logger = logging.getLogger(__name__)


@dataclass
class SurveyProgress:
    completed_pages: list[int] = field(default_factory=list)
    remaining_pages: list[int] = field(default_factory=list)
    total_answered: int = 0
    total_questions: int = 0
    is_complete: bool = False
    missing_question_ids: list[str] = field(default_factory=list)


class DiagnosisService:
    """Collects answers page by page and persists the scored diagnosis.

    Usage::

        service = DiagnosisService(repo, locks=locks, listeners=[similarity])
        service.submit_answers("user-1", 1, {"q1": 5, "q2": 3, ...})
        progress = service.get_progress("user-1")
        scored = await service.complete_survey("user-1")
    """

    def __init__(
        self,
        repository: Repository,
        *,
        engine: TraitScoringEngine | None = None,
        locks: UserLocks | None = None,
        listeners: list[VectorChangeListener] | None = None,
    ) -> None:
        self._repo = repository
        self._engine = engine or TraitScoringEngine()
        self._locks = locks or UserLocks()
        self._listeners: list[VectorChangeListener] = list(listeners or [])

    @property
    def pages(self) -> int:
        return self._engine.pages

    def add_listener(self, listener: VectorChangeListener) -> None:
        self._listeners.append(listener)

    # -- Answers -------------------------------------------------------------

    def submit_answers(
        self, user_id: str, page: int, answers: Mapping[str, int]
    ) -> ReliabilityReport:
        """Validate and upsert one page of answers.

        Every question id must belong to the active questions of *page*
        and every score must be an integer from 1 to 7.  Returns the
        reliability report of the submitted page in question order.
        """
        if not 1 <= page <= self.pages:
            raise ActionableError.validation(
                field_name="page",
                reason=f"page {page} is outside 1–{self.pages}",
            )
        if not answers:
            raise ActionableError.validation(
                field_name="answers",
                reason=f"no answers submitted for page {page}",
            )

        page_questions = [
            q for q in self._repo.list_questions(active_only=True) if q.page == page
        ]
        page_ids = {q.id for q in page_questions}
        foreign = sorted(qid for qid in answers if qid not in page_ids)
        if foreign:
            raise ActionableError.validation(
                field_name="answers",
                reason=f"question(s) {foreign} are not active questions on page {page}",
            )
        for question_id, score in answers.items():
            validate_answer_score(question_id, score)

        self._repo.upsert_answers(
            Answer(user_id=user_id, question_id=qid, score=score)
            for qid, score in answers.items()
        )
        logger.debug("Stored %d answers for %s on page %d", len(answers), user_id, page)

        ordered = [answers[q.id] for q in page_questions if q.id in answers]
        return check_reliability(ordered)

    def get_progress(self, user_id: str) -> SurveyProgress:
        questions = self._engine.active_questions(self._repo.list_questions(active_only=True))
        answered = {a.question_id for a in self._repo.list_answers(user_id)}

        by_page: dict[int, list[str]] = defaultdict(list)
        for question in questions:
            by_page[question.page].append(question.id)

        completed: list[int] = []
        remaining: list[int] = []
        missing: list[str] = []
        for page in range(1, self.pages + 1):
            page_missing = [qid for qid in by_page.get(page, []) if qid not in answered]
            (remaining if page_missing else completed).append(page)
            missing.extend(page_missing)

        return SurveyProgress(
            completed_pages=completed,
            remaining_pages=remaining,
            total_answered=sum(1 for q in questions if q.id in answered),
            total_questions=len(questions),
            is_complete=not remaining,
            missing_question_ids=missing,
        )

    # -- Completion ----------------------------------------------------------

    async def complete_survey(self, user_id: str) -> ScoredDiagnosis:
        """Score the user's answers and persist the diagnosis.

        Re-completing overwrites the current row in place with an
        incremented version and replaces its potential scores.

        Raises:
            IncompleteInputError: some active question is unanswered.
            ConcurrencyConflict: the stored diagnosis changed mid-flight.
        """
        async with self._locks.hold(user_id):
            progress = self.get_progress(user_id)
            if not progress.is_complete:
                raise ActionableError.incomplete_input(user_id, progress.missing_question_ids)

            previous = self._repo.get_current_diagnosis(user_id)
            scored = self._engine.compute_diagnosis(
                user_id,
                self._repo.list_answers(user_id),
                self._repo.list_questions(),
                previous=previous,
            )

            with self._repo.transaction():
                self._repo.save_diagnosis(
                    scored.diagnosis,
                    expected_version=previous.version if previous is not None else None,
                )
                self._repo.replace_potential_scores(scored.diagnosis.id, scored.potential_scores)

            logger.info(
                "Survey completed for %s — diagnosis %s at version %s",
                user_id,
                scored.diagnosis.id,
                scored.diagnosis.version,
            )

        await notify_vectors_changed(self._listeners, scored.diagnosis)
        return scored
