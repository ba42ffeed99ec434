"""Custom exception hierarchy for the plusplus bot.

Following error taxonomy: retryable, non-retryable, validation, rate-limit.
Policy outcomes (quota denial, self-targeting, unknown commands) are not
exceptions; they are reported through ``OutcomeStatus``.
"""


class PlusPlusError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(PlusPlusError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(PlusPlusError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class MalformedEventError(ValidationError):
    """Inbound chat event is missing a required field or is unsupported."""

    pass


class UnknownOperationError(NonRetryableError):
    """An operation symbol or kind has no registry entry.

    Always a programming error: the parser only emits registered symbols.
    """

    pass


class ChatGatewayError(RetryableError):
    """Slack API communication errors."""

    pass


class RateLimitError(ChatGatewayError):
    """Slack API rate limit exceeded."""

    def __init__(self, retry_after: int | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
