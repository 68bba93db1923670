"""Error taxonomy for calls against the Notion API."""

from typing import Optional


class SyncError(Exception):
    """Base class for classified Notion API failures."""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        """
        Args:
            message: Human readable error description
            status: HTTP status code of the failed response, if any
            code: Notion error code of the failed response, if any
        """
        self.message = message
        self.status = status
        self.code = code
        super().__init__(message)


class RateLimitedError(SyncError):
    """Notion answered 429; retry after the server-provided interval or backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        status: Optional[int] = 429,
        code: Optional[str] = "rate_limited"
    ):
        super().__init__(message, status=status, code=code)
        self.retry_after = retry_after


class TransientError(SyncError):
    """Temporary failure (5xx, conflict, timeout, network); retried after a fixed wait."""

    retryable = True


class PermanentError(SyncError):
    """Request will never succeed as sent, e.g. a malformed payload."""


class NotFoundStaleError(SyncError):
    """Target page is gone or its ID is stale (400/404)."""


class AuthExpiredError(SyncError):
    """Credentials were rejected (401); needs renewal, not retry."""
