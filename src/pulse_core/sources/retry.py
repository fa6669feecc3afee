"""Bounded retry with exponential backoff and cooperative self-throttling."""
import asyncio
import logging
import math
from time import monotonic
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    InvalidCredential,
    RateLimited,
    SourceError,
    SourceRequestError,
    SourceUnavailable,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_BACKOFF_MS = 1000


class Throttle:
    """Per-client rate state shared by every call made through one client.

    Records a backoff-until deadline after a 429 so later calls fail fast
    instead of issuing a doomed request, and optionally caps the number of
    requests per rolling window.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or monotonic
        self._window_start = self._clock()
        self._requests = 0
        self.backoff_until: Optional[float] = None

    @property
    def backing_off(self) -> bool:
        return self.backoff_until is not None and self._clock() < self.backoff_until

    def check(self) -> None:
        """Raise RateLimited if the caller should not issue a request now."""
        now = self._clock()

        if self.backoff_until is not None and now < self.backoff_until:
            wait = self.backoff_until - now
            raise RateLimited(
                f"Rate limited, wait {math.ceil(wait)} seconds", retry_after=wait
            )

        if now - self._window_start >= self.window_seconds:
            self._requests = 0
            self._window_start = now

        if self.max_requests is not None and self._requests >= self.max_requests:
            wait = self.window_seconds - (now - self._window_start)
            raise RateLimited(
                f"Rate limit exceeded, wait {math.ceil(wait)} seconds",
                retry_after=wait,
            )

    def record_request(self) -> None:
        self._requests += 1

    def record_rate_limit(self, delay: float) -> None:
        self.backoff_until = self._clock() + delay
        logger.warning("Backing off for %.2fs after rate limit", delay)


def is_transient(exc: BaseException) -> bool:
    """Only 429 and 5xx/network failures are worth retrying."""
    return isinstance(exc, (RateLimited, SourceUnavailable))


def error_from_status(
    status: int, message: str, retry_after: Optional[float] = None
) -> SourceError:
    """Translate an HTTP error status into the matching SourceError."""
    if status == 401:
        return InvalidCredential(f"HTTP 401: {message}")
    if status == 429:
        return RateLimited(f"Rate limited: {message}", retry_after=retry_after)
    if 500 <= status < 600:
        return SourceUnavailable(f"HTTP {status}: {message}", status_code=status)
    return SourceRequestError(f"HTTP {status} (non-retryable): {message}", status)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_backoff_ms: int = DEFAULT_BASE_BACKOFF_MS,
    throttle: Optional[Throttle] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Run operation, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        max_retries: Maximum number of attempts in total
        base_backoff_ms: Delay before the second attempt; doubles each time
        throttle: Optional shared throttle (checked once before the first
            attempt, updated on every 429)
        sleep: Awaitable sleep function (asyncio.sleep by default)

    Returns:
        Result of the first successful attempt

    Raises:
        RateLimited: Immediately if the throttle is still backing off
        SourceError: The last error once attempts are exhausted, or any
            non-transient error on first occurrence
    """
    sleep = sleep or asyncio.sleep

    if throttle is not None:
        throttle.check()

    attempt = 0
    while True:
        try:
            return await operation()
        except (RateLimited, SourceUnavailable) as exc:
            delay = base_backoff_ms * (2**attempt) / 1000.0

            if isinstance(exc, RateLimited):
                if exc.retry_after:
                    delay = exc.retry_after
                if throttle is not None:
                    throttle.record_rate_limit(delay)

            if attempt + 1 >= max_retries:
                logger.error("Giving up after %s attempts: %s", attempt + 1, exc)
                raise

            logger.warning(
                "%s, backoff=%.2fs, attempt=%s/%s",
                exc,
                delay,
                attempt + 1,
                max_retries,
            )
            await sleep(delay)
            attempt += 1
