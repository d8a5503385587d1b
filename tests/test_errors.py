"""Actionable error tests — structured, routable failures.

Maps to BDD specs: TestErrorFactories, TestErrorSerialization,
TestExceptionClassification
"""

from __future__ import annotations

import pytest

from diagnosis_engine.errors import (
    ActionableError,
    ConcurrencyConflict,
    ConfigError,
    ErrorType,
    ExternalServiceError,
    IncompleteInputError,
    InsufficientDataError,
    NotFoundError,
    ValidationError,
)


class TestErrorFactories:
    """REQUIREMENT: Each failure kind maps to a typed error the caller can route on.

    WHO: Callers of the scoring, similarity, and refinement engines
    WHAT: Factory classmethods return the matching subclass and ErrorType;
          context carries the identifiers needed to act on the error
    WHY: A caller must distinguish "fix your input" from "retry later"
         without parsing message strings
    """

    def test_validation_factory_returns_validation_error(self) -> None:
        """validation() yields a ValidationError tagged VALIDATION naming the field."""
        err = ActionableError.validation("answers.q1", "score 9 is outside 1–7")
        assert isinstance(err, ValidationError)
        assert err.error_type == ErrorType.VALIDATION
        assert "answers.q1" in err.error

    def test_incomplete_input_is_a_validation_error_listing_missing_ids(self) -> None:
        """incomplete_input() is catchable as ValidationError and lists what is missing."""
        err = ActionableError.incomplete_input("user-1", ["q7", "q8"])
        assert isinstance(err, IncompleteInputError)
        assert isinstance(err, ValidationError)
        assert err.context == {"user_id": "user-1", "missing_question_ids": ["q7", "q8"]}
        assert "2 active question(s)" in err.error

    def test_not_found_carries_entity_and_identifier(self) -> None:
        """not_found() records which entity was missing and under which id."""
        err = ActionableError.not_found("brush-up history", "h-1")
        assert isinstance(err, NotFoundError)
        assert err.error_type == ErrorType.NOT_FOUND
        assert err.context == {"entity": "brush-up history", "identifier": "h-1"}

    def test_concurrency_conflict_records_both_versions(self) -> None:
        """concurrency_conflict() names the expected and the stored version."""
        err = ActionableError.concurrency_conflict("d-1", "1.0", "1.1")
        assert isinstance(err, ConcurrencyConflict)
        assert err.error_type == ErrorType.CONCURRENCY
        assert err.context is not None
        assert err.context["expected_version"] == "1.0"
        assert err.context["actual_version"] == "1.1"

    def test_external_service_error_names_model(self) -> None:
        """external_service() includes the model so the operator knows what to pull."""
        err = ActionableError.external_service("Ollama", "mistral:7b", "timed out")
        assert isinstance(err, ExternalServiceError)
        assert err.error_type == ErrorType.EXTERNAL_SERVICE
        assert "mistral:7b" in err.error
        assert err.ai_guidance is not None
        assert "mistral:7b" in (err.ai_guidance.command or "")

    def test_insufficient_data_names_trigger(self) -> None:
        """insufficient_data() records the trigger that had nothing to work with."""
        err = ActionableError.insufficient_data("user-1", "SIGNAL_A_ADDED")
        assert isinstance(err, InsufficientDataError)
        assert err.error_type == ErrorType.INSUFFICIENT_DATA
        assert err.context == {"user_id": "user-1", "trigger_type": "SIGNAL_A_ADDED"}

    def test_config_factory_returns_config_error(self) -> None:
        """config() yields a ConfigError pointing at settings.toml."""
        err = ActionableError.config("similarity", "must be a table")
        assert isinstance(err, ConfigError)
        assert err.service == "settings.toml"

    def test_errors_are_raisable(self) -> None:
        """Factory results behave as ordinary exceptions with the message as str()."""
        with pytest.raises(NotFoundError, match="user-9"):
            raise ActionableError.not_found("diagnosis for user", "user-9")


class TestErrorSerialization:
    """REQUIREMENT: Errors serialize to compact JSON-ready dicts.

    WHO: The CLI printing failures and any agent consuming them
    WHAT: to_dict() always carries success, error, error_type, service and
          timestamp; optional parts appear only when set
    WHY: Null-padded payloads are noise for both humans and agents
    """

    def test_to_dict_includes_core_fields(self) -> None:
        """The serialized form always reports success=False and the error type value."""
        data = ActionableError.validation("page", "page 4 is outside 1–3").to_dict()
        assert data["success"] is False
        assert data["error_type"] == "validation"
        assert data["service"] == "validation"
        assert "timestamp" in data

    def test_to_dict_omits_unset_optional_fields(self) -> None:
        """insufficient_data has no troubleshooting, so the key is absent."""
        data = ActionableError.insufficient_data("user-1", "MANUAL").to_dict()
        assert "troubleshooting" not in data
        assert "ai_guidance" not in data
        assert data["context"]["trigger_type"] == "MANUAL"

    def test_to_dict_nests_guidance(self) -> None:
        """AI guidance and troubleshooting serialize as nested dicts."""
        data = ActionableError.external_service("Ollama", "mistral:7b", "boom").to_dict()
        assert data["ai_guidance"]["action_required"]
        assert data["troubleshooting"]["steps"][0].startswith("1.")


class TestExceptionClassification:
    """REQUIREMENT: Raw exceptions are classified by recovery path.

    WHO: Code wrapping third-party calls without a specific factory
    WHAT: Timeouts and refused connections become CONNECTION errors;
          everything else becomes UNEXPECTED; a caller suggestion survives
    WHY: "Start the service" and "read the traceback" are different fixes
    """

    def test_timeout_is_connection_error(self) -> None:
        """A message containing 'timed out' maps to CONNECTION."""
        err = ActionableError.from_exception(TimeoutError("read timed out"), "Ollama", "chat")
        assert err.error_type == ErrorType.CONNECTION

    def test_connection_refused_is_connection_error(self) -> None:
        """'Connection refused' maps to CONNECTION."""
        err = ActionableError.from_exception(OSError("Connection refused"), "Ollama", "list")
        assert err.error_type == ErrorType.CONNECTION

    def test_other_errors_are_unexpected(self) -> None:
        """Anything unrecognized maps to UNEXPECTED and names the operation."""
        err = ActionableError.from_exception(KeyError("bigFive"), "similarity", "compare")
        assert err.error_type == ErrorType.UNEXPECTED
        assert "compare" in err.error

    def test_caller_suggestion_is_preserved(self) -> None:
        """A suggestion passed by the caller overrides the generic one."""
        err = ActionableError.from_exception(
            RuntimeError("boom"), "similarity", "matrix", suggestion="Re-run the cohort matrix"
        )
        assert err.suggestion == "Re-run the cohort matrix"
