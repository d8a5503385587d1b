"""Global test configuration — shared fixtures and builders.

This conftest provides:

1. **Survey builders** — ``build_questions`` lays out the standard
   3 × 30 survey (per page: four questions for each Big Five category,
   two per thinking sub-dimension, two behavior questions) and
   ``uniform_answers`` answers every question with the same score.

2. **Diagnosis builders** — ``make_diagnosis`` produces a valid
   DiagnosisResult with controlled vectors, so similarity and refinement
   tests do not depend on the scoring pipeline.

3. **Shared I/O-boundary fixtures** — ``repo`` (real in-memory
   repository), ``vector_store`` / ``trait_index`` (real ChromaDB backed
   by ``tmp_path``), and ``mock_client`` (RefinementClient with its
   ``propose`` coroutine stubbed — no Ollama connection needed).
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from diagnosis_engine.models import (
    DiagnosisResult,
    Question,
    QuestionCategory,
    ReliabilityStatus,
    StressTolerance,
    TokenUsage,
)
from diagnosis_engine.persistence.memory import InMemoryRepository
from diagnosis_engine.refinement.client import RefinementClient, RefinementProposal
from diagnosis_engine.similarity.index import TraitIndex
from diagnosis_engine.similarity.store import VectorStore
from diagnosis_engine.traits import THINKING_DIMENSIONS

PAGES = 3
QUESTIONS_PER_PAGE = 30

_BIG_FIVE_CATEGORIES = (
    QuestionCategory.EXTRAVERSION,
    QuestionCategory.OPENNESS,
    QuestionCategory.AGREEABLENESS,
    QuestionCategory.CONSCIENTIOUSNESS,
    QuestionCategory.NEUROTICISM,
)

NEUTRAL_BIG_FIVE: dict[str, float] = {
    "extraversion": 50,
    "openness": 50,
    "agreeableness": 50,
    "conscientiousness": 50,
    "neuroticism": 50,
}
NEUTRAL_THINKING: dict[str, float] = {"leader": 50, "analyst": 50, "supporter": 50, "energetic": 50}
NEUTRAL_BEHAVIOR: dict[str, float] = {
    "efficiency": 50,
    "friendliness": 50,
    "knowledge": 50,
    "appearance": 50,
    "challenge": 50,
}


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_questions(pages: int = PAGES) -> list[Question]:
    """The standard survey: 30 questions per page in a fixed category layout."""
    questions: list[Question] = []
    for page in range(1, pages + 1):
        for index in range(QUESTIONS_PER_PAGE):
            order = index + 1
            qid = f"p{page}-q{order:02d}"
            if index < 20:
                questions.append(
                    Question(
                        id=qid,
                        category=_BIG_FIVE_CATEGORIES[index % 5],
                        order_number=order,
                        page=page,
                    )
                )
            elif index < 28:
                questions.append(
                    Question(
                        id=qid,
                        category=QuestionCategory.THINKING,
                        order_number=order,
                        page=page,
                        thinking_dimension=THINKING_DIMENSIONS[(index - 20) % 4],
                    )
                )
            else:
                questions.append(
                    Question(
                        id=qid,
                        category=QuestionCategory.BEHAVIOR,
                        order_number=order,
                        page=page,
                    )
                )
    return questions


def uniform_answers(questions: list[Question], score: int = 4) -> dict[str, int]:
    return {q.id: score for q in questions}


def make_diagnosis(
    user_id: str = "user-1",
    *,
    big_five: dict[str, float] | None = None,
    thinking: dict[str, float] | None = None,
    behavior: dict[str, float] | None = None,
    labels: list[str] | None = None,
    version: str = "1.0",
    diagnosis_id: str | None = None,
) -> DiagnosisResult:
    """A valid DiagnosisResult with neutral vectors unless overridden."""
    return DiagnosisResult(
        id=diagnosis_id or f"diag-{user_id}",
        user_id=user_id,
        type_code="EL",
        type_name="Leader",
        feature_labels=list(labels or []),
        reliability_status=ReliabilityStatus.RELIABLE,
        stress_tolerance=StressTolerance.MEDIUM,
        big_five=dict(big_five or NEUTRAL_BIG_FIVE),
        thinking_pattern=dict(thinking or NEUTRAL_THINKING),
        behavior_pattern=dict(behavior or NEUTRAL_BEHAVIOR),
        version=version,
    )


def make_proposal(
    *,
    confidence: float = 80,
    deltas: dict[str, dict[str, float]] | None = None,
    labels: list[str] | None = None,
    reasoning: str = "MBTI extraversion agrees with interview notes",
    risk_flags: list[str] | None = None,
) -> RefinementProposal:
    return RefinementProposal(
        feature_labels=labels,
        score_deltas=deltas if deltas is not None else {"bigFive": {"extraversion": 3}},
        reasoning=reasoning,
        confidence=confidence,
        risk_flags=list(risk_flags or []),
        usage=TokenUsage(prompt_tokens=120, completion_tokens=40, total_tokens=160),
        model="mistral:7b",
    )


# ---------------------------------------------------------------------------
# Shared I/O-boundary fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo() -> InMemoryRepository:
    """Real in-memory repository, empty."""
    return InMemoryRepository()


@pytest.fixture
def questions(repo: InMemoryRepository) -> list[Question]:
    """The standard survey, already stored in ``repo``."""
    survey = build_questions()
    repo.add_questions(survey)
    return survey


@pytest.fixture
def vector_store(tmp_path: Path) -> VectorStore:
    """Real ChromaDB VectorStore backed by a per-test temp directory."""
    return VectorStore(persist_dir=str(tmp_path / "chroma"))


@pytest.fixture
def trait_index(vector_store: VectorStore) -> TraitIndex:
    return TraitIndex(vector_store)


@pytest.fixture
def mock_client() -> RefinementClient:
    """RefinementClient with a stubbed ``propose`` — no Ollama connection needed.

    Uses ``RefinementClient.__new__`` to create a real instance without
    calling ``__init__`` (which would create an ``ollama.AsyncClient``).
    ``propose`` returns a confident proposal by default; tests override
    ``return_value`` or ``side_effect`` as needed.
    """
    client = RefinementClient.__new__(RefinementClient)
    client.base_url = "http://localhost:11434"
    client.model = "mistral:7b"
    client.temperature = 0.3
    client.timeout = 60.0
    client.prompt_cost_per_1k = 0.0
    client.completion_cost_per_1k = 0.0
    client.propose = AsyncMock(return_value=make_proposal())  # type: ignore[method-assign]
    client.health_check = AsyncMock()  # type: ignore[method-assign]
    return client
