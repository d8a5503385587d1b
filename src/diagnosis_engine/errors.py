"""Actionable error hierarchy for the diagnosis engine.

Errors are classified by **recovery path**, not by origin.
Each error type carries structured guidance for three audiences:
  - The calling code (typed ``error_type`` and subclass for routing)
  - The human operator (``suggestion`` + ``troubleshooting`` steps)
  - An AI agent (``ai_guidance`` with concrete next actions)

Scoring and similarity failures are raised directly to the caller.
Refinement failures are caught inside the refinement engine and turned
into structured outcomes; only ``NotFoundError`` and ``ValidationError``
escape from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorType(StrEnum):
    """Recovery-path categories — what to *do*, not where it came from."""

    CONFIG = "config"
    CONNECTION = "connection"
    CONCURRENCY = "concurrency"
    EXTERNAL_SERVICE = "external_service"
    INDEX = "index"
    INSUFFICIENT_DATA = "insufficient_data"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    VALIDATION = "validation"
    UNEXPECTED = "unexpected"


# ---------------------------------------------------------------------------
# Guidance dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AIGuidance:
    """Machine-readable guidance for an AI agent consuming this error."""

    action_required: str
    command: str | None = None
    discovery_tool: str | None = None
    checks: list[str] | None = None
    steps: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action_required": self.action_required}
        if self.command is not None:
            result["command"] = self.command
        if self.discovery_tool is not None:
            result["discovery_tool"] = self.discovery_tool
        if self.checks is not None:
            result["checks"] = self.checks
        if self.steps is not None:
            result["steps"] = self.steps
        return result


@dataclass(frozen=True)
class Troubleshooting:
    """Sequential, human-readable recovery steps for the operator."""

    steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"steps": self.steps}


# ---------------------------------------------------------------------------
# Base actionable error
# ---------------------------------------------------------------------------


@dataclass
class ActionableError(Exception):
    """Structured error with embedded recovery guidance.

    Use the factory classmethods rather than constructing directly —
    they encode domain knowledge and pick the right subclass.
    """

    error: str
    error_type: ErrorType
    service: str

    success: bool = field(default=False, init=False)
    suggestion: str | None = None
    ai_guidance: AIGuidance | None = None
    troubleshooting: Troubleshooting | None = None
    context: dict[str, Any] | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    # Make it work as a real exception
    def __post_init__(self) -> None:
        super().__init__(self.error)

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Compact JSON-ready dict — ``None`` values are excluded."""
        result: dict[str, Any] = {
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type.value,
            "service": self.service,
            "timestamp": self.timestamp,
        }
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        if self.ai_guidance is not None:
            result["ai_guidance"] = self.ai_guidance.to_dict()
        if self.troubleshooting is not None:
            result["troubleshooting"] = self.troubleshooting.to_dict()
        if self.context is not None:
            result["context"] = self.context
        return result

    # -- factory methods -----------------------------------------------------

    @classmethod
    def config(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ConfigError:
        """Missing or invalid configuration in settings.toml."""
        return ConfigError(
            error=f"Configuration error — {field_name}: {reason}",
            error_type=ErrorType.CONFIG,
            service="settings.toml",
            suggestion=suggestion or f"Fix '{field_name}' in config/settings.toml",
            ai_guidance=AIGuidance(
                action_required=f"Correct the '{field_name}' value in config/settings.toml",
                checks=[
                    "Verify config/settings.toml exists",
                    f"Verify '{field_name}' is present and valid",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Open config/settings.toml",
                    f"2. Locate the '{field_name}' setting",
                    f"3. Fix the issue: {reason}",
                    "4. Save and re-run",
                ]
            ),
        )

    @classmethod
    def connection(
        cls,
        service: str,
        url: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Service unreachable (Ollama, ChromaDB)."""
        return cls(
            error=f"Cannot connect to {service} at {url}: {raw_error}",
            error_type=ErrorType.CONNECTION,
            service=service,
            suggestion=suggestion or f"Verify {service} is running at {url}",
            ai_guidance=AIGuidance(
                action_required=f"Verify {service} is reachable",
                command=f"curl -s {url}",
                checks=[
                    f"Is {service} running?",
                    f"Is the URL {url} correct in settings.toml?",
                    "Is a VPN or firewall blocking the connection?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Verify {service} is running",
                    f"2. Test connectivity: curl -s {url}",
                    "3. Check the URL in config/settings.toml matches the running service",
                    "4. Re-run the command",
                ]
            ),
        )

    @classmethod
    def index(
        cls,
        collection: str,
        raw_error: str | None = None,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """ChromaDB collection missing or unusable."""
        detail = f": {raw_error}" if raw_error else ""
        return cls(
            error=f"Vector index collection '{collection}' is unavailable{detail}",
            error_type=ErrorType.INDEX,
            service="ChromaDB",
            suggestion=suggestion or "Rebuild the trait index from the stored diagnoses",
            ai_guidance=AIGuidance(
                action_required=f"Recreate the '{collection}' collection",
                checks=[
                    "Is [chroma].persist_dir pointing at the right directory?",
                    "Is the directory writable?",
                ],
            ),
        )

    @classmethod
    def not_found(
        cls,
        entity: str,
        identifier: str,
        *,
        suggestion: str | None = None,
    ) -> NotFoundError:
        """A user, diagnosis, or history row does not exist."""
        return NotFoundError(
            error=f"{entity} '{identifier}' not found",
            error_type=ErrorType.NOT_FOUND,
            service="repository",
            suggestion=suggestion or f"Verify the {entity} identifier '{identifier}'",
            ai_guidance=AIGuidance(
                action_required=f"Use an existing {entity} identifier",
                checks=[
                    f"Has the {entity} been created yet?",
                    "Was the identifier copied correctly?",
                ],
            ),
            context={"entity": entity, "identifier": identifier},
        )

    @classmethod
    def validation(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ValidationError:
        """Input validation failure (answers, vectors, versions, TOML values)."""
        return ValidationError(
            error=f"Validation error — {field_name}: {reason}",
            error_type=ErrorType.VALIDATION,
            service="validation",
            suggestion=suggestion or f"Fix '{field_name}': {reason}",
            ai_guidance=AIGuidance(
                action_required=f"Correct the value for '{field_name}'",
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Check the value of '{field_name}'",
                    f"2. Issue: {reason}",
                    "3. Correct and retry",
                ]
            ),
        )

    @classmethod
    def incomplete_input(
        cls,
        user_id: str,
        missing_question_ids: list[str],
        *,
        suggestion: str | None = None,
    ) -> IncompleteInputError:
        """Survey completion attempted before every active question was answered."""
        return IncompleteInputError(
            error=(
                f"Answer set for user '{user_id}' is incomplete — "
                f"{len(missing_question_ids)} active question(s) unanswered"
            ),
            error_type=ErrorType.VALIDATION,
            service="scoring",
            suggestion=suggestion or "Answer every question on all pages before completing the survey",
            ai_guidance=AIGuidance(
                action_required="Check survey progress and submit the missing pages",
                checks=["Call get_progress() and inspect remaining_pages"],
            ),
            context={"user_id": user_id, "missing_question_ids": missing_question_ids},
        )

    @classmethod
    def insufficient_data(
        cls,
        user_id: str,
        trigger_type: str,
        *,
        suggestion: str | None = None,
    ) -> InsufficientDataError:
        """Refinement gated before the AI collaborator was called."""
        return InsufficientDataError(
            error=f"Insufficient data to refine diagnosis for user '{user_id}' ({trigger_type})",
            error_type=ErrorType.INSUFFICIENT_DATA,
            service="refinement",
            suggestion=suggestion or "Add the external diagnosis or evaluation the trigger refers to",
            context={"user_id": user_id, "trigger_type": trigger_type},
        )

    @classmethod
    def external_service(
        cls,
        service: str,
        model: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ExternalServiceError:
        """AI completion call failed (timeout, rate limit, malformed response)."""
        return ExternalServiceError(
            error=f"AI completion failed for model '{model}': {raw_error}",
            error_type=ErrorType.EXTERNAL_SERVICE,
            service=service,
            suggestion=suggestion or f"Verify model '{model}' is available and responsive",
            ai_guidance=AIGuidance(
                action_required="Verify the completion service and retry the trigger manually",
                command=f"ollama list | grep {model}",
                checks=[
                    f"Is {service} running?",
                    f"Is model '{model}' pulled? Run: ollama pull {model}",
                    "Did the model return a JSON object matching the schema?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Check {service} is running: ollama list",
                    f"2. If model missing: ollama pull {model}",
                    "3. Re-run the refinement with the MANUAL trigger",
                ]
            ),
        )

    @classmethod
    def concurrency_conflict(
        cls,
        diagnosis_id: str,
        expected_version: str | None,
        actual_version: str | None,
        *,
        suggestion: str | None = None,
    ) -> ConcurrencyConflict:
        """The stored diagnosis changed between read and write."""
        return ConcurrencyConflict(
            error=(
                f"Diagnosis '{diagnosis_id}' changed concurrently — "
                f"expected version {expected_version}, found {actual_version}"
            ),
            error_type=ErrorType.CONCURRENCY,
            service="repository",
            suggestion=suggestion or "Reload the diagnosis and retry the operation",
            context={
                "diagnosis_id": diagnosis_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )

    @classmethod
    def parse(
        cls,
        source: str,
        location: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Malformed TOML or JSON input."""
        return cls(
            error=f"Parse failure in {source} — {location}: {raw_error}",
            error_type=ErrorType.PARSE,
            service=source,
            suggestion=suggestion or f"Fix the syntax of {source}",
            ai_guidance=AIGuidance(
                action_required=f"Repair the syntax error in {source}",
                checks=[f"Inspect {location} in {source}"],
            ),
        )

    @classmethod
    def unexpected(
        cls,
        service: str,
        operation: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Catch-all for truly unexpected failures."""
        return cls(
            error=f"Unexpected error in {service} during {operation}: {raw_error}",
            error_type=ErrorType.UNEXPECTED,
            service=service,
            suggestion=suggestion or "This is an unexpected error — check logs for details",
            ai_guidance=AIGuidance(
                action_required="Analyze the error and escalate if needed",
                checks=[
                    "Check the full traceback in logs",
                    f"Is {service} in a known-good state?",
                ],
            ),
        )

    @classmethod
    def from_exception(
        cls,
        error: Exception,
        service: str,
        operation: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Auto-classify an exception by keyword patterns.

        A caller-supplied ``suggestion`` is always preserved — it carries
        context the generic classifier cannot infer.
        """
        error_str = str(error).lower()
        raw_error = str(error)

        if any(kw in error_str for kw in ("timeout", "timed out")):
            return cls.connection(service, "", raw_error, suggestion=suggestion)

        if any(kw in error_str for kw in ("connection refused", "unreachable", "resolve")):
            return cls.connection(service, "", raw_error, suggestion=suggestion)

        return cls.unexpected(service, operation, raw_error, suggestion=suggestion)


# ---------------------------------------------------------------------------
# Typed subclasses
# ---------------------------------------------------------------------------


class ConfigError(ActionableError):
    """settings.toml is missing or invalid."""


class NotFoundError(ActionableError):
    """No user, diagnosis, or history row for the given identifier."""


class ValidationError(ActionableError):
    """Malformed answer set, vector, version string, or setting value."""


class IncompleteInputError(ValidationError):
    """Not every active question has an answer."""


class InsufficientDataError(ActionableError):
    """Refinement trigger has no matching external signal."""


class ExternalServiceError(ActionableError):
    """AI completion collaborator failure.  Never retried automatically."""


class ConcurrencyConflict(ActionableError):
    """Optimistic version check rejected a diagnosis write."""
