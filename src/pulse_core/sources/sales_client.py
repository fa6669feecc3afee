"""Sales export client.

The sales ledger is a published CSV export with every transaction ever
recorded. There is no date-range query; callers bucket and filter.
"""
import asyncio
from typing import Any, Optional

import aiofiles
import aiohttp

from .exceptions import SourceUnavailable
from .http import SourceClient
from .retry import Throttle, error_from_status, parse_retry_after, with_retry


class SalesExportClient(SourceClient):
    """Downloads the sales CSV from an http(s) URL or reads a local file."""

    def __init__(
        self,
        csv_source: str,
        session: aiohttp.ClientSession,
        throttle: Optional[Throttle] = None,
        **kwargs: Any,
    ) -> None:
        """Initialize sales export client.

        Args:
            csv_source: http(s) URL, file:// URL or filesystem path
            session: Injected aiohttp ClientSession
            throttle: Shared throttle
            **kwargs: Retry settings forwarded to SourceClient
        """
        if not csv_source:
            raise ValueError("Sales CSV source is required")
        super().__init__(session, throttle=throttle, **kwargs)
        self.csv_source = csv_source

    @property
    def is_remote(self) -> bool:
        return self.csv_source.startswith(("http://", "https://"))

    async def fetch_csv(self) -> str:
        """Return the raw CSV text of the export."""
        if self.is_remote:
            text = await with_retry(
                self._download,
                max_retries=self.max_retries,
                base_backoff_ms=self.base_backoff_ms,
                throttle=self.throttle,
                sleep=self._sleep,
            )
        else:
            text = await self._read_local()

        self.logger.info("Fetched sales export (%s bytes)", len(text))
        return text

    async def _download(self) -> str:
        self.throttle.record_request()
        try:
            async with self.session.get(self.csv_source) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise error_from_status(
                        resp.status,
                        body[:200],
                        parse_retry_after(resp.headers.get("Retry-After")),
                    )
                return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SourceUnavailable(f"Network error: {exc}") from exc

    async def _read_local(self) -> str:
        path = self.csv_source
        if path.startswith("file://"):
            path = path[len("file://"):]

        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as handle:
                return await handle.read()
        except OSError as exc:
            raise SourceUnavailable(f"Sales export unreadable: {path} ({exc})") from exc
