"""Shared aiohttp request handling for source clients."""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from .exceptions import SourceError, SourceFormatError, SourceUnavailable
from .retry import (
    DEFAULT_BASE_BACKOFF_MS,
    DEFAULT_MAX_RETRIES,
    Throttle,
    error_from_status,
    parse_retry_after,
    with_retry,
)


class SourceClient:
    """Base for async clients of external metric sources.

    The aiohttp session is injected and owned by the caller.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        throttle: Optional[Throttle] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_backoff_ms: int = DEFAULT_BASE_BACKOFF_MS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.throttle = throttle or Throttle()
        self.max_retries = max_retries
        self.base_backoff_ms = base_backoff_ms
        self._sleep = sleep
        self.logger = logger or logging.getLogger(type(self).__module__)

    def _secrets(self) -> list[str]:
        return []

    def _redact(self, text: str) -> str:
        if not text:
            return text
        for secret in self._secrets():
            if secret:
                text = text.replace(secret, "[REDACTED]")
        return text

    def _error_for_response(
        self, status: int, body: str, retry_after: Optional[float]
    ) -> SourceError:
        """Map a non-200 response to a SourceError (override per source)."""
        return error_from_status(status, self._redact(body[:200]), retry_after)

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        retry: bool = True,
    ) -> Any:
        """GET url and decode JSON, retrying transient failures."""

        async def attempt() -> Any:
            self.throttle.record_request()
            try:
                async with self.session.get(url, params=params, headers=headers) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        self.logger.error(
                            "%s returned HTTP %s: %s",
                            type(self).__name__,
                            resp.status,
                            self._redact(body[:500]),
                        )
                        raise self._error_for_response(
                            resp.status,
                            body,
                            parse_retry_after(resp.headers.get("Retry-After")),
                        )
                    return await resp.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise SourceUnavailable(
                    f"Network error: {self._redact(str(exc))}"
                ) from exc
            except json.JSONDecodeError as exc:
                raise SourceFormatError(f"Invalid JSON response: {exc}") from exc

        return await with_retry(
            attempt,
            max_retries=self.max_retries if retry else 1,
            base_backoff_ms=self.base_backoff_ms,
            throttle=self.throttle,
            sleep=self._sleep,
        )
