"""Environment-driven configuration for Pulse."""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)


CACHE_BACKENDS = ("sqlite", "redis", "memory")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class PulseConfig:
    """Runtime settings. A source with no credentials is left unregistered."""

    postmark_server_token: Optional[str] = None
    postmark_base_url: Optional[str] = None
    postmark_rate_limit_requests: int = 500
    postmark_rate_limit_window_ms: int = 60000
    email_tags: list[str] = field(default_factory=list)

    sales_csv_url: Optional[str] = None

    facebook_access_token: Optional[str] = None
    facebook_ad_account_id: Optional[str] = None
    facebook_api_version: str = "v18.0"

    cache_backend: str = "sqlite"
    cache_db_path: str = "data/pulse_cache.db"
    redis_url: str = "redis://localhost:6379"

    email_cache_ttl_seconds: int = 900
    sales_cache_ttl_seconds: int = 300
    ads_cache_ttl_seconds: int = 300

    retry_max_attempts: int = 3
    retry_base_backoff_ms: int = 1000

    @classmethod
    def from_env(cls) -> "PulseConfig":
        backend = os.getenv("PULSE_CACHE_BACKEND", "sqlite").strip().lower()
        if backend not in CACHE_BACKENDS:
            raise ValueError(
                f"PULSE_CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}, "
                f"got '{backend}'"
            )

        return cls(
            postmark_server_token=os.getenv("POSTMARK_SERVER_TOKEN") or None,
            postmark_base_url=os.getenv("POSTMARK_BASE_URL") or None,
            postmark_rate_limit_requests=_int_env("POSTMARK_RATE_LIMIT_REQUESTS", 500),
            postmark_rate_limit_window_ms=_int_env(
                "POSTMARK_RATE_LIMIT_WINDOW_MS", 60000
            ),
            email_tags=_list_env("EMAIL_TAGS"),
            sales_csv_url=os.getenv("SALES_CSV_URL") or None,
            facebook_access_token=os.getenv("FACEBOOK_ACCESS_TOKEN") or None,
            facebook_ad_account_id=os.getenv("FACEBOOK_AD_ACCOUNT_ID") or None,
            facebook_api_version=os.getenv("FACEBOOK_API_VERSION", "v18.0"),
            cache_backend=backend,
            cache_db_path=os.getenv("PULSE_CACHE_DB_PATH", "data/pulse_cache.db"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            email_cache_ttl_seconds=_int_env("EMAIL_CACHE_TTL_SECONDS", 900),
            sales_cache_ttl_seconds=_int_env("SALES_CACHE_TTL_SECONDS", 300),
            ads_cache_ttl_seconds=_int_env("ADS_CACHE_TTL_SECONDS", 300),
            retry_max_attempts=_int_env("RETRY_MAX_ATTEMPTS", 3),
            retry_base_backoff_ms=_int_env("RETRY_BASE_BACKOFF_MS", 1000),
        )

    def secrets(self) -> list[Optional[str]]:
        return [self.postmark_server_token, self.facebook_access_token]
