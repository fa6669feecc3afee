"""Ads platform insights client (Graph Marketing API).

Fetches account-level daily insights. The access token is issued outside
this system; an expired token is terminal until an operator replaces it.
"""
import json
from datetime import date
from typing import Any, Optional

import aiohttp

from .exceptions import InvalidCredential, RateLimited, SourceError, SourceRequestError
from .http import SourceClient
from .retry import Throttle, error_from_status


INSIGHT_FIELDS = (
    "date_start",
    "date_stop",
    "spend",
    "impressions",
    "clicks",
    "ctr",
    "cpc",
    "reach",
    "frequency",
    "actions",
    "action_values",
    "cost_per_action_type",
)

# Graph error codes
TOKEN_ERROR_CODES = {102, 190}
THROTTLE_ERROR_CODES = {4, 17, 32, 613}


class AdsInsightsClient(SourceClient):
    """Async client for daily ad account insights."""

    BASE_URL = "https://graph.facebook.com"

    def __init__(
        self,
        access_token: str,
        session: aiohttp.ClientSession,
        ad_account_id: Optional[str] = None,
        api_version: str = "v18.0",
        base_url: Optional[str] = None,
        throttle: Optional[Throttle] = None,
        max_pages: int = 50,
        **kwargs: Any,
    ) -> None:
        """Initialize ads insights client.

        Args:
            access_token: Externally issued access token (never logged)
            session: Injected aiohttp ClientSession
            ad_account_id: Account ID (with or without 'act_' prefix); the
                first accessible account is used when omitted
            api_version: Graph API version
            base_url: Override for the API root
            throttle: Shared throttle
            max_pages: Pagination safety limit
            **kwargs: Retry settings forwarded to SourceClient
        """
        if not access_token:
            raise ValueError("Facebook access token is required")
        super().__init__(session, throttle=throttle, **kwargs)
        self._access_token = access_token

        if ad_account_id and not ad_account_id.startswith("act_"):
            ad_account_id = f"act_{ad_account_id}"
        self.ad_account_id = ad_account_id

        self.api_root = f"{(base_url or self.BASE_URL).rstrip('/')}/{api_version}"
        self.max_pages = max_pages

    def _secrets(self) -> list[str]:
        return [self._access_token]

    def update_access_token(self, access_token: str) -> None:
        if not access_token:
            raise ValueError("Facebook access token is required")
        self._access_token = access_token
        self.logger.info("Ads access token replaced")

    def _error_for_response(
        self, status: int, body: str, retry_after: Optional[float]
    ) -> SourceError:
        try:
            error = json.loads(body).get("error", {})
        except (ValueError, AttributeError):
            error = {}
        return self._graph_error(error, status, body, retry_after)

    def _graph_error(
        self,
        error: dict,
        status: int,
        body: str = "",
        retry_after: Optional[float] = None,
    ) -> SourceError:
        if not isinstance(error, dict):
            error = {"message": str(error)} if error else {}
        code = error.get("code", 0)
        message = self._redact(error.get("message") or body[:200])

        if code in TOKEN_ERROR_CODES or status == 401:
            return InvalidCredential(f"Access token is invalid or expired: {message}")
        if code in THROTTLE_ERROR_CODES:
            return RateLimited(f"Rate limited: {message}", retry_after=retry_after)
        if status == 200:
            return SourceRequestError(f"Graph API error: {message}", 400, code)
        return error_from_status(status, message, retry_after)

    async def _graph_get(self, url: str, params: Optional[dict] = None) -> dict:
        result = await self._get_json(url, params=params)
        if isinstance(result, dict) and result.get("error"):
            raise self._graph_error(result["error"], 200)
        return result

    async def get_ad_accounts(self) -> list[dict]:
        result = await self._graph_get(
            f"{self.api_root}/me/adaccounts",
            {"access_token": self._access_token, "fields": "id,name,account_status"},
        )
        return result.get("data", [])

    async def resolve_account_id(self) -> str:
        """Configured account, or the first account the token can access."""
        if self.ad_account_id:
            return self.ad_account_id

        accounts = await self.get_ad_accounts()
        if not accounts:
            raise SourceRequestError(
                "No ad accounts found for this token", status_code=403
            )

        self.ad_account_id = accounts[0]["id"]
        self.logger.info(
            "Using ad account %s (%s found)", self.ad_account_id, len(accounts)
        )
        return self.ad_account_id

    async def fetch_insights(self, start: date, end: date) -> list[dict]:
        """Fetch daily account-level insights for start..end inclusive.

        Returns:
            List of raw insight rows (one per day with activity)
        """
        account_id = await self.resolve_account_id()
        url = f"{self.api_root}/{account_id}/insights"
        params: Optional[dict] = {
            "access_token": self._access_token,
            "fields": ",".join(INSIGHT_FIELDS),
            "level": "account",
            "time_increment": "1",
            "time_range": json.dumps(
                {"since": start.isoformat(), "until": end.isoformat()}
            ),
            "limit": "500",
        }

        rows: list[dict] = []
        for _ in range(self.max_pages):
            result = await self._graph_get(url, params)
            rows.extend(result.get("data", []))

            next_url = result.get("paging", {}).get("next")
            if not next_url:
                break
            url, params = next_url, None

        self.logger.info(
            "Fetched %s insight rows for %s (%s..%s)",
            len(rows),
            account_id,
            start.isoformat(),
            end.isoformat(),
        )
        return rows

    async def validate_token(self) -> dict[str, Any]:
        """Check the access token and return its metadata."""
        result = await self._graph_get(
            f"{self.api_root}/debug_token",
            {"input_token": self._access_token, "access_token": self._access_token},
        )
        token_data = result.get("data", {})
        return {
            "valid": token_data.get("is_valid", False),
            "expires_at": token_data.get("expires_at", 0),
            "scopes": token_data.get("scopes", []),
            "app_id": token_data.get("app_id", ""),
        }
