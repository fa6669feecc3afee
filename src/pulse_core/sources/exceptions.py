"""Custom exceptions for external metric sources."""
from typing import Optional


class SourceError(Exception):
    """Base exception for all source client and adapter errors."""


class SourceUnavailable(SourceError):
    """Raised for network failures and HTTP 5xx responses (retryable)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimited(SourceError):
    """Raised on HTTP 429 or when a throttle is still backing off."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class InvalidCredential(SourceError):
    """Raised when an access token is expired or malformed (terminal)."""


class SourceRequestError(SourceError):
    """Raised for HTTP 4xx responses other than 401/429 (non-retryable)."""

    def __init__(self, message: str, status_code: int, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class SourceFormatError(SourceError):
    """Raised when a raw payload lacks required structure."""


class MalformedRecord(SourceFormatError):
    """Raised by the strict number policy for a single unparseable value."""

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Malformed value for {field}: {value!r}")
