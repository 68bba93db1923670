"""Rate limit and retry handling for Notion API calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from notion_client.errors import RequestTimeoutError

from shared.errors import (
    AuthExpiredError,
    NotFoundStaleError,
    PermanentError,
    RateLimitedError,
    SyncError,
    TransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def classify_error(error: Exception) -> Optional[SyncError]:
    """
    Map an exception raised by a Notion call onto the sync error taxonomy.

    Notion client errors expose the HTTP status as ``status`` and the Notion
    error code as ``code``.

    Args:
        error: Exception raised by the Notion client

    Returns:
        Classified SyncError, or None when the error is not an API or
        network failure and should propagate unchanged
    """
    if isinstance(error, SyncError):
        return error

    if isinstance(error, (RequestTimeoutError, httpx.HTTPError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return TransientError(f"Network error: {error}")

    status = getattr(error, "status", None)
    if not isinstance(status, int):
        return None

    code = getattr(error, "code", None)
    code = getattr(code, "value", code)
    message = str(error) or f"HTTP {status}"

    if status == 429 or code == "rate_limited":
        return RateLimitedError(message, retry_after=_extract_retry_after(error), status=status, code=code)
    if status == 401 or code == "unauthorized":
        return AuthExpiredError(message, status=status, code=code)
    if status in (400, 404):
        return NotFoundStaleError(message, status=status, code=code)
    if status == 409 or status >= 500:
        return TransientError(message, status=status, code=code)
    return PermanentError(message, status=status, code=code)


def _extract_retry_after(error: Exception) -> Optional[float]:
    """
    Extract the retry-after duration from a Notion API error.

    Args:
        error: Rate limit error from the Notion client

    Returns:
        Number of seconds to wait, or None if the server gave no hint
    """
    candidates = [getattr(error, "headers", None)]
    response = getattr(error, "response", None)
    if response is not None:
        candidates.append(getattr(response, "headers", None))

    for headers in candidates:
        if not headers:
            continue
        try:
            retry_after = headers.get("Retry-After") or headers.get("retry-after")
        except AttributeError:
            continue
        if retry_after:
            try:
                return float(retry_after)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed Retry-After header: {retry_after!r}")

    return None


class ApiInvoker:
    """
    Runs Notion API calls with classification-aware retry.

    Rate limits wait for the server-provided Retry-After or back off
    exponentially from ``rate_limit_base_delay``; other transient failures
    wait ``transient_delay``. Non-retryable errors are raised immediately.
    After ``max_attempts`` attempts the last classified error is raised.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        rate_limit_base_delay: float = 1.5,
        transient_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the invoker.

        Args:
            max_attempts: Total number of attempts per call, first one included
            rate_limit_base_delay: Backoff base in seconds when no Retry-After is given
            transient_delay: Fixed wait in seconds after a transient failure
            sleep: Awaitable sleep function
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.rate_limit_base_delay = rate_limit_base_delay
        self.transient_delay = transient_delay
        self._sleep = sleep

    def compute_delay(self, error: SyncError, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        if isinstance(error, RateLimitedError):
            if error.retry_after is not None:
                return error.retry_after
            return self.rate_limit_base_delay * (2 ** (attempt - 1))
        return self.transient_delay

    async def invoke(self, operation: Callable[[], Awaitable[T]], description: str = "Notion request") -> T:
        """
        Run an operation, retrying retryable failures.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            description: Short label used in log messages

        Returns:
            The operation's result

        Raises:
            SyncError: Classified failure once retries are exhausted or the
                failure is not retryable
            Exception: Unclassified errors, unchanged
        """
        attempt = 0

        while True:
            attempt += 1
            try:
                return await operation()

            except Exception as e:
                error = classify_error(e)
                if error is None:
                    raise

                if not error.retryable:
                    logger.warning(f"{description} failed with {type(error).__name__}: {error}")
                    _raise_classified(error, e)

                if attempt >= self.max_attempts:
                    logger.error(f"Max attempts ({self.max_attempts}) exceeded for {description}: {error}")
                    _raise_classified(error, e)

                delay = self.compute_delay(error, attempt)
                if isinstance(error, RateLimitedError):
                    logger.warning(
                        f"Rate limit hit for {description}. Waiting {delay:.2f} seconds before retry "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                else:
                    logger.warning(
                        f"{description} failed (attempt {attempt}/{self.max_attempts}): {error}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )

                await self._sleep(delay)


def _raise_classified(error: SyncError, original: Exception):
    if error is original:
        raise error
    raise error from original
