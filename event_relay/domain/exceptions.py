"""Custom exception hierarchy for the event relay.

Following error taxonomy: retryable, non-retryable, validation.
"""


class EventRelayError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(EventRelayError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(EventRelayError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class TransientPublishError(RetryableError):
    """Channel transport hiccup (connection reset, broken pipe, timeout)."""

    pass


class PublishError(NonRetryableError):
    """Channel transport rejected the publish (auth, malformed request)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        """Initialize with optional HTTP status reported by the transport."""
        self.status = status
        super().__init__(message)


class SharedStoreError(RetryableError):
    """Shared key-value store is unreachable or returned an error."""

    pass


class EnrichmentRejectedError(RetryableError):
    """Background enrichment queue is full."""

    pass
