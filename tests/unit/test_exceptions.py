"""Tests for asana_sync/exceptions.py - exception hierarchy."""

import pytest

from asana_sync.exceptions import (
    AsanaSyncError,
    ConfigurationError,
    ExternalServiceError,
    RuleEvaluationError,
    RulesValidationError,
    TemplateError,
)


class TestHierarchy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        "exc_class",
        [ConfigurationError, RulesValidationError, TemplateError, RuleEvaluationError, ExternalServiceError],
    )
    def test_all_inherit_from_base(self, exc_class) -> None:
        """Should be catchable as AsanaSyncError."""
        with pytest.raises(AsanaSyncError):
            raise exc_class("failure")

    def test_validation_error_is_configuration_error(self) -> None:
        """Should abort runs the same way as other configuration errors."""
        assert issubclass(RulesValidationError, ConfigurationError)

    def test_message_attribute(self) -> None:
        """Should keep the message on the exception."""
        error = ConfigurationError("Missing input: rules")

        assert error.message == "Missing input: rules"
        assert str(error) == "Missing input: rules"


class TestRuleIndexedErrors:
    """Tests for errors carrying a rule index."""

    def test_validation_error_prefix(self) -> None:
        """Should prefix the message with the rule index."""
        error = RulesValidationError("Missing 'when' block", rule_index=3)

        assert str(error) == "Rule 3: Missing 'when' block"
        assert error.rule_index == 3

    def test_validation_error_without_index(self) -> None:
        """Should leave document-level messages unprefixed."""
        error = RulesValidationError("rules array cannot be empty")

        assert str(error) == "rules array cannot be empty"
        assert error.rule_index is None

    def test_evaluation_error_prefix(self) -> None:
        """Should prefix evaluation errors with the rule index."""
        assert str(RuleEvaluationError("title empty", rule_index=0)) == "Rule 0: title empty"


class TestExternalServiceError:
    """Tests for ExternalServiceError."""

    def test_http_message(self) -> None:
        """Should include the status code in the message."""
        error = ExternalServiceError("Asana API error", status_code=404, response_text='{"errors": []}')

        assert str(error) == "Asana API error (HTTP 404)"
        assert error.message == "Asana API error"
        assert error.response_text == '{"errors": []}'

    def test_network_message(self) -> None:
        """Should include the network error code in the message."""
        error = ExternalServiceError("GitHub request failed", error_code="ETIMEDOUT")

        assert str(error) == "GitHub request failed (ETIMEDOUT)"
        assert error.is_retryable

    def test_plain_message(self) -> None:
        """Should not be retryable without status or error code."""
        error = ExternalServiceError("unknown")

        assert str(error) == "unknown"
        assert not error.is_retryable
