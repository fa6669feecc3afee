"""External metric source clients."""
from .ads_client import AdsInsightsClient
from .email_client import EmailStatsClient
from .exceptions import (
    InvalidCredential,
    MalformedRecord,
    RateLimited,
    SourceError,
    SourceFormatError,
    SourceRequestError,
    SourceUnavailable,
)
from .retry import Throttle, with_retry
from .sales_client import SalesExportClient

__all__ = [
    "AdsInsightsClient",
    "EmailStatsClient",
    "SalesExportClient",
    "Throttle",
    "with_retry",
    "SourceError",
    "SourceUnavailable",
    "RateLimited",
    "InvalidCredential",
    "SourceRequestError",
    "SourceFormatError",
    "MalformedRecord",
]
