"""Pulse metrics layer.

Normalizes daily metrics from:
- Postmark outbound stats (email)
- ThriveCart CSV export (sales)
- Facebook Marketing API insights (ads)

Merges them into one per-day series, derives rates and caches per-day
records (SQLite, Redis or in-memory).
"""
from .cache import InMemoryCacheStore, RedisCacheStore, SQLiteCacheStore
from .merger import merge
from .pipeline import MetricsPipeline
from .rates import derive_rates, summarize
from .schema import DailyMetric, DateRange, MetricsReport
from .service import MetricsService

__all__ = [
    "MetricsPipeline",
    "MetricsService",
    "InMemoryCacheStore",
    "SQLiteCacheStore",
    "RedisCacheStore",
    "DailyMetric",
    "DateRange",
    "MetricsReport",
    "merge",
    "summarize",
    "derive_rates",
]
