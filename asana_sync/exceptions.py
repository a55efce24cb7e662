"""Custom exception hierarchy for asana-sync.

This module defines a structured exception hierarchy that separates the
failures which must abort a run (configuration) from the failures which are
isolated to a single field, rule, or task.

Exception Hierarchy:
    AsanaSyncError (base)
    ├── ConfigurationError
    │   └── RulesValidationError
    ├── TemplateError
    ├── RuleEvaluationError
    └── ExternalServiceError

Example Usage:
    >>> from asana_sync.exceptions import ConfigurationError
    >>> try:
    ...     raw = parse_rules_yaml(text)
    ... except yaml.YAMLError as e:
    ...     raise ConfigurationError(f"Invalid YAML: {e}") from e
"""

# Status codes that are never worth retrying
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404, 409})

# Low-level network failures that usually succeed on a second attempt
RETRYABLE_NETWORK_ERRORS = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "ENOTFOUND",
        "ENETUNREACH",
        "EAI_AGAIN",
    }
)


class AsanaSyncError(Exception):
    """Base exception for all asana-sync errors.

    All custom exceptions inherit from this base class, allowing callers to
    catch every asana-sync-specific error with a single except clause.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(AsanaSyncError):
    """Configuration-related errors.

    Raised when action inputs, the rules YAML, or the triggering event are
    unusable. These errors abort the run before any rule executes.

    Examples:
        - Required input not provided
        - Invalid YAML syntax in the rules input
        - Event payload missing its pull_request/issue record
        - Unsupported event name
    """

    pass


class RulesValidationError(ConfigurationError):
    """A rule set failed structural or semantic validation.

    Attributes:
        rule_index: Zero-based index of the offending rule, or None when the
            problem concerns the rule set as a whole.
    """

    def __init__(self, message: str, rule_index: int | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message without the rule prefix
            rule_index: Index of the rule that failed validation
        """
        self.rule_index = rule_index
        if rule_index is not None:
            message = f"Rule {rule_index}: {message}"
        super().__init__(message)


class TemplateError(AsanaSyncError):
    """Template compilation errors.

    Raised while translating a rule template into an executable form.
    The template evaluator catches it, so callers never see it.
    """

    pass


class RuleEvaluationError(AsanaSyncError):
    """A matched rule could not produce its action.

    Isolated to the rule that raised it; the engine logs it and continues.

    Attributes:
        rule_index: Zero-based index of the rule
    """

    def __init__(self, message: str, rule_index: int | None = None) -> None:
        self.rule_index = rule_index
        if rule_index is not None:
            message = f"Rule {rule_index}: {message}"
        super().__init__(message)


class ExternalServiceError(AsanaSyncError):
    """External service communication errors.

    Raised by the Asana and GitHub clients when a request fails.

    Attributes:
        status_code: HTTP status code (if the server answered)
        response_text: Response body text (if the server answered)
        error_code: Network error code such as ``ECONNRESET`` (if no answer)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
            error_code: Network error code (if applicable)
        """
        self.message = message
        self.status_code = status_code
        self.response_text = response_text
        self.error_code = error_code

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"
        elif error_code:
            full_message = f"{message} ({error_code})"

        Exception.__init__(self, full_message)

    @property
    def is_retryable(self) -> bool:
        """Whether repeating the request could succeed.

        Rate limits (429) and server errors (5xx) are retryable, as are the
        network error codes in ``RETRYABLE_NETWORK_ERRORS``. Every other
        client error fails fast.
        """
        if self.status_code is not None:
            if self.status_code == 429 or self.status_code >= 500:
                return True
            if self.status_code in NON_RETRYABLE_STATUS_CODES:
                return False
        return self.error_code in RETRYABLE_NETWORK_ERRORS
