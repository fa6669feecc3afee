"""API-key dependency guarding the /api/v1 metrics routes."""
import hmac
import logging
import os
from typing import Annotated

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-PULSE-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def expected_api_key() -> str:
    """Key the dashboard must present, read per request from PULSE_API_KEY.

    Raises:
        HTTPException: 503 when the server has no key configured
    """
    key = os.getenv("PULSE_API_KEY", "").strip()
    if not key:
        logger.error("PULSE_API_KEY is not configured; rejecting metrics request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Metrics API key is not configured on the server",
        )
    return key


async def require_api_key(
    api_key: Annotated[str | None, Security(api_key_header)] = None
) -> str:
    """Validate the X-PULSE-API-KEY header.

    Raises:
        HTTPException: 401 if the key is missing or wrong, 503 if the server
            has no key configured
    """
    expected = expected_api_key()

    if not api_key or not hmac.compare_digest(api_key.encode(), expected.encode()):
        logger.warning("Rejected metrics request with missing or invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key
