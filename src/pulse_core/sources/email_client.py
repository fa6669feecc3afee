"""Outbound email statistics client (Postmark stats API)."""
import asyncio
import json
from datetime import date
from typing import Any, Optional

import aiohttp

from .exceptions import InvalidCredential, RateLimited, SourceError
from .http import SourceClient
from .retry import Throttle, error_from_status


STATS_ENDPOINTS = ("sends", "bounces", "spam", "opens", "clicks")


class EmailStatsClient(SourceClient):
    """Async client for per-day outbound email stats.

    Each stats call fans out to the five per-metric endpoints concurrently.
    """

    BASE_URL = "https://api.postmarkapp.com"

    def __init__(
        self,
        server_token: str,
        session: aiohttp.ClientSession,
        base_url: Optional[str] = None,
        throttle: Optional[Throttle] = None,
        **kwargs: Any,
    ) -> None:
        """Initialize email stats client.

        Args:
            server_token: Server API token (never logged)
            session: Injected aiohttp ClientSession
            base_url: Override for the API root
            throttle: Shared throttle (request window + 429 backoff)
            **kwargs: Retry settings forwarded to SourceClient
        """
        if not server_token:
            raise ValueError("Postmark server token is required")
        super().__init__(session, throttle=throttle, **kwargs)
        self._server_token = server_token
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def _secrets(self) -> list[str]:
        return [self._server_token]

    def _error_for_response(
        self, status: int, body: str, retry_after: Optional[float]
    ) -> SourceError:
        message = body[:200]
        try:
            error = json.loads(body)
            message = f"{error['Message']} ({error['ErrorCode']})"
        except (ValueError, KeyError, TypeError):
            pass
        return error_from_status(status, self._redact(message), retry_after)

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "X-Postmark-Server-Token": self._server_token,
        }

    async def fetch_endpoint(
        self, name: str, start: date, end: date, tag: Optional[str] = None
    ) -> dict:
        """Fetch one /stats/outbound/{name} payload."""
        params = {"fromdate": start.isoformat(), "todate": end.isoformat()}
        if tag:
            params["tag"] = tag

        return await self._get_json(
            f"{self.base_url}/stats/outbound/{name}",
            params=params,
            headers=self._headers,
        )

    async def fetch_outbound_stats(
        self, start: date, end: date, tag: Optional[str] = None
    ) -> dict[str, dict]:
        """Fetch all per-metric stats for a date range.

        A failing endpoint degrades to an empty payload. Credential and
        rate-limit failures, or every endpoint failing, raise.

        Returns:
            Mapping of endpoint name -> raw payload
        """
        results = await asyncio.gather(
            *(self.fetch_endpoint(name, start, end, tag) for name in STATS_ENDPOINTS),
            return_exceptions=True,
        )

        bundle: dict[str, dict] = {}
        failures: list[SourceError] = []

        for name, result in zip(STATS_ENDPOINTS, results):
            if isinstance(result, (InvalidCredential, RateLimited)):
                raise result
            if isinstance(result, SourceError):
                self.logger.warning(
                    "Email stats endpoint %s failed, using empty data: %s", name, result
                )
                failures.append(result)
                bundle[name] = {"Days": []}
            elif isinstance(result, BaseException):
                raise result
            else:
                bundle[name] = result

        if len(failures) == len(STATS_ENDPOINTS):
            raise failures[0]

        self.logger.info(
            "Fetched email stats %s..%s (tag=%s, %s endpoint failures)",
            start.isoformat(),
            end.isoformat(),
            tag or "overall",
            len(failures),
        )
        return bundle
