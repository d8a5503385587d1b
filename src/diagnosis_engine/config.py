"""Configuration loading and validation.

Loads ``settings.toml`` and validates every field at startup, before a
repository is opened or the AI collaborator is contacted.  Every section
is optional; omitted values fall back to the product defaults below.

The validated config is exposed as a :class:`Settings` dataclass with
typed fields for each section: ``scoring``, ``similarity``,
``refinement``, ``ollama``, and ``chroma``.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from diagnosis_engine.errors import ActionableError

# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ScoringConfig:
    """Survey layout from ``[scoring]``."""

    pages: int = 3
    questions_per_page: int = 30


@dataclass
class SimilarityConfig:
    """Similarity thresholds from ``[similarity]``."""

    min_similarity: int = 70
    limit: int = 10
    differing_threshold: float = 15.0
    euclidean_max_delta: float = 60.0
    matrix_concurrency: int = 8


@dataclass
class RefinementConfig:
    """Refinement gates and bounds from ``[refinement]``."""

    confidence_threshold: float = 50.0
    max_adjustment: float = 5.0
    min_score: float = 20.0
    max_score: float = 80.0
    max_evaluations: int = 10


@dataclass
class OllamaConfig:
    """Ollama connection settings from ``[ollama]``."""

    base_url: str = "http://localhost:11434"
    llm_model: str = "mistral:7b"
    temperature: float = 0.3
    timeout: float = 60.0
    prompt_cost_per_1k: float = 0.0
    completion_cost_per_1k: float = 0.0


@dataclass
class ChromaConfig:
    """ChromaDB settings from ``[chroma]``."""

    persist_dir: str = "./data/chroma_db"


@dataclass
class Settings:
    """Top-level validated configuration."""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    chroma: ChromaConfig = field(default_factory=ChromaConfig)


# ---------------------------------------------------------------------------
# Default settings path
# ---------------------------------------------------------------------------

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


# ---------------------------------------------------------------------------
# Loading and validation
# ---------------------------------------------------------------------------


def load_settings(path: str | Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Load and validate settings from a TOML file.

    Raises :class:`~diagnosis_engine.errors.ActionableError`:
      - CONFIG if the file is missing or a section is not a table
      - VALIDATION if field values are out of range
      - PARSE if the TOML is malformed

    Returns a fully validated :class:`Settings` instance.
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="settings_path",
            reason=f"Settings file not found: {filepath}",
            suggestion=f"Create {filepath} or copy config/settings.toml from the repository",
        )

    raw_text = filepath.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.parse(
            source="settings.toml",
            location="TOML syntax",
            raw_error=str(exc),
            suggestion=f"Fix TOML syntax in {filepath}",
        ) from None

    return _validate(data, filepath)


def _validate(data: dict[str, object], filepath: Path) -> Settings:
    """Validate raw TOML data and return a Settings instance."""

    # -- scoring section -----------------------------------------------------
    scoring_data = _optional_section(data, "scoring", filepath)
    scoring = ScoringConfig(
        pages=int(scoring_data.get("pages", 3)),
        questions_per_page=int(scoring_data.get("questions_per_page", 30)),
    )
    _require_positive("scoring.pages", scoring.pages)
    _require_positive("scoring.questions_per_page", scoring.questions_per_page)

    # -- similarity section --------------------------------------------------
    similarity_data = _optional_section(data, "similarity", filepath)
    similarity = SimilarityConfig(
        min_similarity=int(similarity_data.get("min_similarity", 70)),
        limit=int(similarity_data.get("limit", 10)),
        differing_threshold=float(similarity_data.get("differing_threshold", 15.0)),
        euclidean_max_delta=float(similarity_data.get("euclidean_max_delta", 60.0)),
        matrix_concurrency=int(similarity_data.get("matrix_concurrency", 8)),
    )
    _require_range("similarity.min_similarity", similarity.min_similarity, 0, 100)
    _require_positive("similarity.limit", similarity.limit)
    _require_range("similarity.differing_threshold", similarity.differing_threshold, 0, 100)
    _require_range("similarity.euclidean_max_delta", similarity.euclidean_max_delta, 1, 100)
    _require_positive("similarity.matrix_concurrency", similarity.matrix_concurrency)

    # -- refinement section --------------------------------------------------
    refinement_data = _optional_section(data, "refinement", filepath)
    refinement = RefinementConfig(
        confidence_threshold=float(refinement_data.get("confidence_threshold", 50.0)),
        max_adjustment=float(refinement_data.get("max_adjustment", 5.0)),
        min_score=float(refinement_data.get("min_score", 20.0)),
        max_score=float(refinement_data.get("max_score", 80.0)),
        max_evaluations=int(refinement_data.get("max_evaluations", 10)),
    )
    _require_range("refinement.confidence_threshold", refinement.confidence_threshold, 0, 100)
    _require_range("refinement.max_adjustment", refinement.max_adjustment, 0, 100)
    _require_range("refinement.min_score", refinement.min_score, 0, 100)
    _require_range("refinement.max_score", refinement.max_score, 0, 100)
    if refinement.min_score >= refinement.max_score:
        raise ActionableError.validation(
            field_name="refinement.min_score",
            reason=(
                f"is {refinement.min_score} — must be below "
                f"refinement.max_score ({refinement.max_score})"
            ),
            suggestion="Set [refinement].min_score lower than [refinement].max_score",
        )
    _require_positive("refinement.max_evaluations", refinement.max_evaluations)

    # -- ollama section ------------------------------------------------------
    ollama_data = _optional_section(data, "ollama", filepath)
    base_url = str(ollama_data.get("base_url", "http://localhost:11434"))
    if not base_url.startswith(("http://", "https://")):
        raise ActionableError.validation(
            field_name="ollama.base_url",
            reason=f"'{base_url}' is missing a scheme (http:// or https://)",
            suggestion="Set [ollama].base_url to a URL starting with http:// or https://",
        )

    ollama = OllamaConfig(
        base_url=base_url,
        llm_model=str(ollama_data.get("llm_model", "mistral:7b")),
        temperature=float(ollama_data.get("temperature", 0.3)),
        timeout=float(ollama_data.get("timeout", 60.0)),
        prompt_cost_per_1k=float(ollama_data.get("prompt_cost_per_1k", 0.0)),
        completion_cost_per_1k=float(ollama_data.get("completion_cost_per_1k", 0.0)),
    )
    _require_range("ollama.temperature", ollama.temperature, 0, 2)
    if ollama.timeout <= 0:
        raise ActionableError.validation(
            field_name="ollama.timeout",
            reason=f"is {ollama.timeout} — must be > 0",
            suggestion="Set [ollama].timeout to a positive number of seconds",
        )
    for cost_name in ("prompt_cost_per_1k", "completion_cost_per_1k"):
        value = getattr(ollama, cost_name)
        if value < 0:
            raise ActionableError.validation(
                field_name=f"ollama.{cost_name}",
                reason=f"is {value} — must be >= 0",
                suggestion=f"Set [ollama].{cost_name} to 0 or a positive rate",
            )

    # -- chroma section ------------------------------------------------------
    chroma_data = _optional_section(data, "chroma", filepath)
    chroma = ChromaConfig(
        persist_dir=str(chroma_data.get("persist_dir", "./data/chroma_db")),
    )

    return Settings(
        scoring=scoring,
        similarity=similarity,
        refinement=refinement,
        ollama=ollama,
        chroma=chroma,
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _optional_section(data: dict[str, object], name: str, filepath: Path) -> dict[str, object]:
    """Return a top-level section, ``{}`` when absent, or raise CONFIG if not a table."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ActionableError.config(
            field_name=name,
            reason=f"[{name}] in {filepath} must be a table, not {type(section).__name__}",
            suggestion=f"Define [{name}] as a TOML table",
        )
    return section


def _require_positive(field_name: str, value: int) -> None:
    if value < 1:
        raise ActionableError.validation(
            field_name=field_name,
            reason=f"is {value} — must be >= 1",
            suggestion=f"Set {field_name} to a positive integer",
        )


def _require_range(field_name: str, value: float, low: float, high: float) -> None:
    """Raise VALIDATION when *value* falls outside ``[low, high]``."""
    if value < low:
        raise ActionableError.validation(
            field_name=field_name,
            reason=f"is {value} — must be >= {low}",
            suggestion=f"Set {field_name} to a value between {low} and {high}",
        )
    if value > high:
        raise ActionableError.validation(
            field_name=field_name,
            reason=f"is {value} — must be <= {high}",
            suggestion=f"Set {field_name} to a value between {low} and {high}",
        )
