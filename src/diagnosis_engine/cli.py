"""CLI command handlers for the diagnosis engine.

Each public function corresponds to a CLI subcommand and encapsulates
the wiring, orchestration, and output for that command.  Results are
printed as JSON on stdout; errors are printed as JSON on stderr by
:func:`diagnosis_engine.__main__.main`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Any

from diagnosis_engine.config import DEFAULT_SETTINGS_PATH, Settings, load_settings
from diagnosis_engine.errors import ActionableError
from diagnosis_engine.models import Answer, Question, QuestionCategory
from diagnosis_engine.scoring.engine import TraitScoringEngine
from diagnosis_engine.similarity.metrics import (
    combined_similarity,
    cosine_similarity,
    differing_factors,
    euclidean_similarity,
)
from diagnosis_engine.traits import BIG_FIVE, validate_vector
from diagnosis_engine.versioning import increment_version


def resolve_settings(path: str | None) -> Settings:
    """Settings from *path*; built-in defaults when no file is given and the default is absent."""
    if path is None and not DEFAULT_SETTINGS_PATH.exists():
        return Settings()
    return load_settings(path or DEFAULT_SETTINGS_PATH)


def handle_score(args: argparse.Namespace) -> dict[str, Any]:
    """Score an answer file against a question file and print the diagnosis."""
    settings = resolve_settings(args.settings)
    questions = load_questions(Path(args.questions))
    answers = load_answers(Path(args.answers), user_id=args.user)

    engine = TraitScoringEngine(pages=settings.scoring.pages)
    scored = engine.compute_diagnosis(args.user, answers, questions)
    diagnosis = scored.diagnosis
    if args.previous_version:
        diagnosis = replace(diagnosis, version=increment_version(args.previous_version))

    output = {
        "diagnosis": diagnosis.to_dict(),
        "potentialScores": [score.to_dict() for score in scored.potential_scores],
        "reliability": scored.reliability.to_dict(),
    }
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return output


def handle_compare(args: argparse.Namespace) -> dict[str, Any]:
    """Compare two bigFive vectors and print their similarity."""
    settings = resolve_settings(args.settings)
    max_delta = args.max_delta if args.max_delta is not None else settings.similarity.euclidean_max_delta
    threshold = (
        args.threshold if args.threshold is not None else settings.similarity.differing_threshold
    )

    first = load_vector(Path(args.first))
    second = load_vector(Path(args.second))
    output = {
        "similarityPercentage": combined_similarity(first, second, max_delta),
        "cosine": cosine_similarity(first, second),
        "euclidean": euclidean_similarity(first, second, max_delta),
        "differingFactors": differing_factors(first, second, threshold),
    }
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return output


def handle_health(args: argparse.Namespace) -> None:
    """Check that Ollama is reachable and the refinement model is pulled."""
    from diagnosis_engine.refinement.client import RefinementClient

    settings = resolve_settings(args.settings)
    client = RefinementClient(
        base_url=settings.ollama.base_url,
        model=settings.ollama.llm_model,
        timeout=settings.ollama.timeout,
    )
    asyncio.run(client.health_check())
    print(f"Ollama OK — {settings.ollama.llm_model} available at {settings.ollama.base_url}")


# ---------------------------------------------------------------------------
# Input files
# ---------------------------------------------------------------------------


def _read_json(path: Path) -> Any:
    if not path.exists():
        raise ActionableError.validation(
            field_name=str(path),
            reason="file not found",
            suggestion=f"Check the path {path}",
        )
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ActionableError.parse(
            source=path.name,
            location=f"line {exc.lineno}",
            raw_error=exc.msg,
        ) from None


def load_questions(path: Path) -> list[Question]:
    """Questions from a JSON list; keys may be camelCase or snake_case."""
    data = _read_json(path)
    if not isinstance(data, list):
        raise ActionableError.validation(
            field_name=path.name, reason="expected a JSON list of questions"
        )
    questions: list[Question] = []
    for raw in data:
        try:
            questions.append(
                Question(
                    id=str(raw["id"]),
                    category=QuestionCategory(raw["category"]),
                    order_number=int(_pick(raw, "orderNumber", "order_number")),
                    page=int(raw["page"]),
                    is_reverse=bool(_pick(raw, "isReverse", "is_reverse", default=False)),
                    is_active=bool(_pick(raw, "isActive", "is_active", default=True)),
                    thinking_dimension=_pick(
                        raw, "thinkingDimension", "thinking_dimension", default=None
                    ),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ActionableError.validation(
                field_name=path.name,
                reason=f"malformed question {raw!r}: {exc}",
            ) from None
    return questions


def load_answers(path: Path, *, user_id: str) -> list[Answer]:
    """Answers from ``{questionId: score}`` or a list of ``{questionId, score}``."""
    data = _read_json(path)
    if isinstance(data, dict):
        pairs = list(data.items())
    elif isinstance(data, list):
        try:
            pairs = [(_pick(raw, "questionId", "question_id"), raw["score"]) for raw in data]
        except (KeyError, TypeError):
            raise ActionableError.validation(
                field_name=path.name,
                reason="each answer needs 'questionId' and 'score'",
            ) from None
    else:
        raise ActionableError.validation(
            field_name=path.name, reason="expected a JSON object or list of answers"
        )
    return [Answer(user_id=user_id, question_id=str(qid), score=score) for qid, score in pairs]


def load_vector(path: Path) -> dict[str, float]:
    """A bigFive vector, either bare or under a ``bigFive`` key."""
    data = _read_json(path)
    if isinstance(data, dict) and BIG_FIVE in data:
        data = data[BIG_FIVE]
    return validate_vector(BIG_FIVE, data)


def _pick(raw: dict[str, Any], *keys: str, **kwargs: Any) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    if "default" in kwargs:
        return kwargs["default"]
    raise KeyError(keys[0])
