"""Metrics service wiring.

Builds the shared aiohttp session, the cache backend and one source per
configured credential, then hands them to a MetricsPipeline.
"""
import logging
from datetime import timedelta
from typing import Optional

import aiohttp
from redis.asyncio import Redis

from ..config import PulseConfig
from ..sources.ads_client import AdsInsightsClient
from ..sources.email_client import EmailStatsClient
from ..sources.retry import Throttle
from ..sources.sales_client import SalesExportClient
from .cache import CacheStore, InMemoryCacheStore, RedisCacheStore, SQLiteCacheStore
from .pipeline import (
    AdsSource,
    EmailSource,
    MetricSource,
    MetricsPipeline,
    SalesSource,
    SourcePolicy,
)


logger = logging.getLogger(__name__)


def _redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def build_cache(config: PulseConfig) -> CacheStore:
    """Cache backend selected by PULSE_CACHE_BACKEND."""
    if config.cache_backend == "memory":
        return InMemoryCacheStore()
    if config.cache_backend == "redis":
        return RedisCacheStore(Redis.from_url(config.redis_url, decode_responses=False))
    return SQLiteCacheStore(config.cache_db_path)


def build_sources(
    config: PulseConfig, session: aiohttp.ClientSession
) -> list[MetricSource]:
    """One source per configured credential; missing ones are skipped."""
    retry = {
        "max_retries": config.retry_max_attempts,
        "base_backoff_ms": config.retry_base_backoff_ms,
    }
    sources: list[MetricSource] = []

    if config.postmark_server_token:
        throttle = Throttle(
            max_requests=config.postmark_rate_limit_requests,
            window_seconds=config.postmark_rate_limit_window_ms / 1000,
        )
        client = EmailStatsClient(
            server_token=config.postmark_server_token,
            session=session,
            base_url=config.postmark_base_url,
            throttle=throttle,
            **retry,
        )
        sources.append(
            EmailSource(
                client,
                SourcePolicy(ttl=timedelta(seconds=config.email_cache_ttl_seconds)),
            )
        )
    else:
        logger.warning("Postmark credentials not configured, email source disabled")

    if config.sales_csv_url:
        client = SalesExportClient(config.sales_csv_url, session=session, **retry)
        sources.append(
            SalesSource(
                client,
                SourcePolicy(ttl=timedelta(seconds=config.sales_cache_ttl_seconds)),
            )
        )
    else:
        logger.warning("SALES_CSV_URL not configured, sales source disabled")

    if config.facebook_access_token:
        client = AdsInsightsClient(
            access_token=config.facebook_access_token,
            session=session,
            ad_account_id=config.facebook_ad_account_id,
            api_version=config.facebook_api_version,
            **retry,
        )
        sources.append(
            AdsSource(
                client,
                SourcePolicy(ttl=timedelta(seconds=config.ads_cache_ttl_seconds)),
            )
        )
    else:
        logger.warning("Facebook credentials not configured, ads source disabled")

    return sources


class MetricsService:
    """Owns long-lived resources behind a MetricsPipeline."""

    def __init__(self, config: Optional[PulseConfig] = None) -> None:
        self.config = config or PulseConfig.from_env()
        self.session: Optional[aiohttp.ClientSession] = None
        self.cache: Optional[CacheStore] = None
        self.pipeline: Optional[MetricsPipeline] = None

    def redact_error(self, text: str) -> str:
        return _redact_text(text, self.config.secrets())

    async def start(self) -> MetricsPipeline:
        """Open the session and cache and build the pipeline."""
        if self.pipeline is not None:
            return self.pipeline

        timeout = aiohttp.ClientTimeout(total=300, connect=30)
        self.session = aiohttp.ClientSession(timeout=timeout)
        self.cache = build_cache(self.config)

        sources = build_sources(self.config, self.session)
        self.pipeline = MetricsPipeline(sources, self.cache)

        logger.info("MetricsService started")
        logger.info("Cache backend: %s", self.config.cache_backend)
        logger.info("Sources: %s", ", ".join(self.pipeline.available_sources) or "none")
        return self.pipeline

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

        if self.cache is not None:
            try:
                await self.cache.close()
            except Exception as exc:
                logger.error(
                    "Failed to close cache: %s", self.redact_error(str(exc))
                )
            self.cache = None

        self.pipeline = None
        logger.info("MetricsService closed")

    async def __aenter__(self) -> MetricsPipeline:
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
