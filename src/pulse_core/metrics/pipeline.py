"""Metrics pipeline: cache-aware fan-out, merge and summary.

Each request loads the selected sources concurrently. A source is served
from cache when every requested day is fresh; otherwise it is re-fetched.
A failed fetch falls back to whatever is cached (possibly stale), or to an
empty series, so one source never blocks the others.
"""
import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Optional, TypeVar

from ..sources.ads_client import AdsInsightsClient
from ..sources.email_client import EmailStatsClient
from ..sources.exceptions import InvalidCredential, RateLimited, SourceError
from ..sources.sales_client import SalesExportClient
from .adapters import (
    LENIENT,
    LenientNumbers,
    normalize_ads,
    normalize_email,
    normalize_sales,
    parse_transactions,
    product_stats,
    recent_transactions,
)
from .cache import CacheStore, Clock, is_fresh
from .merger import merge
from .rates import summarize
from .schema import (
    ADS,
    ALL_SOURCES,
    EMAIL,
    SALES,
    CacheEntry,
    DailyMetric,
    DateRange,
    MetricsReport,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SourcePolicy:
    """Per-source cache and failure policy."""

    ttl: timedelta
    surface_uncached_rate_limit: bool = True


DEFAULT_POLICIES = {
    EMAIL: SourcePolicy(ttl=timedelta(minutes=15)),
    SALES: SourcePolicy(ttl=timedelta(minutes=5)),
    ADS: SourcePolicy(ttl=timedelta(minutes=5)),
}


def _tag_labels(tags: Iterable[str]) -> list[str]:
    """'overall' first, then the distinct named tags in order."""
    return ["overall"] + [t for t in dict.fromkeys(tags) if t and t != "overall"]


async def _gather(coros: Iterable[Awaitable[T]]) -> list[T]:
    """Run concurrently; re-raise the first failure once all have settled."""
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class MetricSource:
    """Binds a source client to its adapter under one cache tag."""

    name = ""

    def __init__(
        self, policy: Optional[SourcePolicy] = None, numbers: LenientNumbers = LENIENT
    ) -> None:
        self.policy = policy or DEFAULT_POLICIES[self.name]
        self.numbers = numbers
        self.credential_error: Optional[InvalidCredential] = None

    @property
    def source_tag(self) -> str:
        return self.name

    async def fetch(self, date_range: DateRange) -> list[DailyMetric]:
        raise NotImplementedError


class EmailSource(MetricSource):
    name = EMAIL

    def __init__(
        self,
        client: EmailStatsClient,
        policy: Optional[SourcePolicy] = None,
        tag: Optional[str] = None,
        numbers: LenientNumbers = LENIENT,
    ) -> None:
        super().__init__(policy, numbers)
        self.client = client
        self.tag = tag

    @property
    def source_tag(self) -> str:
        return f"{EMAIL}:{self.tag or 'overall'}"

    def for_tag(self, tag: Optional[str]) -> "EmailSource":
        return EmailSource(self.client, self.policy, tag=tag, numbers=self.numbers)

    async def fetch(self, date_range: DateRange) -> list[DailyMetric]:
        bundle = await self.client.fetch_outbound_stats(
            date_range.start, date_range.end, self.tag
        )
        return normalize_email(bundle, range_end=date_range.end, numbers=self.numbers)


class SalesSource(MetricSource):
    name = SALES

    def __init__(
        self,
        client: SalesExportClient,
        policy: Optional[SourcePolicy] = None,
        numbers: LenientNumbers = LENIENT,
    ) -> None:
        super().__init__(policy, numbers)
        self.client = client

    async def fetch(self, date_range: DateRange) -> list[DailyMetric]:
        return normalize_sales(await self.client.fetch_csv(), numbers=self.numbers)


class AdsSource(MetricSource):
    name = ADS

    def __init__(
        self,
        client: AdsInsightsClient,
        policy: Optional[SourcePolicy] = None,
        numbers: LenientNumbers = LENIENT,
    ) -> None:
        super().__init__(policy, numbers)
        self.client = client
        # Fixed at construction; a lazily resolved account keeps the default tag
        self._account_tag = client.ad_account_id or "default"

    @property
    def source_tag(self) -> str:
        return f"{ADS}:{self._account_tag}"

    async def fetch(self, date_range: DateRange) -> list[DailyMetric]:
        rows = await self.client.fetch_insights(date_range.start, date_range.end)
        return normalize_ads(rows, numbers=self.numbers)


@dataclass
class SourceOutcome:
    series: list[DailyMetric] = field(default_factory=list)
    error: Optional[str] = None
    stale: bool = False


class MetricsPipeline:
    """Request-scoped orchestration over injected sources and cache."""

    def __init__(
        self,
        sources: Iterable[MetricSource],
        cache: CacheStore,
        clock: Optional[Clock] = None,
    ) -> None:
        self.sources: dict[str, MetricSource] = {s.name: s for s in sources}
        self.cache = cache
        self.clock = clock or cache.clock

    @property
    def available_sources(self) -> list[str]:
        return [name for name in ALL_SOURCES if name in self.sources]

    def select_sources(self, names: Optional[Iterable[str]] = None) -> list[str]:
        """Validate a source filter; None means every configured source."""
        if names is None:
            return self.available_sources

        selected = []
        for name in names:
            if name not in self.sources:
                raise ValueError(f"Unknown or unconfigured source: {name}")
            if name not in selected:
                selected.append(name)
        return selected

    async def get_metrics(
        self, date_range: DateRange, sources: Optional[Iterable[str]] = None
    ) -> MetricsReport:
        """Merged daily series and summary, served from cache when fresh."""
        return await self._run(date_range, sources, force=False)

    async def force_refresh(
        self,
        date_range: DateRange,
        sources: Optional[Iterable[str]] = None,
        tags: Iterable[str] = (),
    ) -> MetricsReport:
        """Same as get_metrics but always re-fetches upstream.

        tags also re-fetches the per-tag email entries; their failures are
        reported under "email:<tag>".
        """
        report = await self._run(date_range, sources, force=True)

        if EMAIL in self.select_sources(sources):
            labels = _tag_labels(tags)[1:]
            email = self.sources[EMAIL]
            outcomes = await _gather(
                self._load(email.for_tag(tag), date_range, force=True)
                for tag in labels
            )
            for label, outcome in zip(labels, outcomes):
                if outcome.error:
                    report.errors[f"{EMAIL}:{label}"] = outcome.error

        return report

    async def _run(
        self,
        date_range: DateRange,
        names: Optional[Iterable[str]],
        force: bool,
    ) -> MetricsReport:
        selected = self.select_sources(names)

        results = await _gather(
            self._load(self.sources[name], date_range, force) for name in selected
        )

        per_source: dict[str, list[DailyMetric]] = {}
        errors: dict[str, str] = {}
        stale: list[str] = []
        for name, outcome in zip(selected, results):
            per_source[name] = outcome.series
            if outcome.error:
                errors[name] = outcome.error
            if outcome.stale:
                stale.append(name)

        daily = merge(per_source, date_range)
        return MetricsReport(
            summary=summarize(daily, selected),
            daily=daily,
            date_range=date_range,
            errors=errors,
            stale_sources=stale,
            generated_at=self.clock(),
        )

    def _all_fresh(
        self, entries: list[CacheEntry], date_range: DateRange, ttl: timedelta
    ) -> bool:
        now = self.clock()
        fresh_days = {e.date for e in entries if is_fresh(e, ttl, now)}
        return all(day in fresh_days for day in date_range.dates())

    async def _load(
        self, source: MetricSource, date_range: DateRange, force: bool
    ) -> SourceOutcome:
        tag = source.source_tag
        entries = await self.cache.get(tag, date_range.start, date_range.end)

        if not force and self._all_fresh(entries, date_range, source.policy.ttl):
            logger.debug("Serving %s from cache", tag)
            return SourceOutcome(series=[e.metric for e in entries if e.metric])

        try:
            if source.credential_error is not None:
                raise source.credential_error
            series = await source.fetch(date_range)
        except SourceError as exc:
            if isinstance(exc, InvalidCredential):
                source.credential_error = exc
            return self._degrade(source, entries, exc)

        in_range = [m for m in series if m.date in date_range]
        await self._store(tag, in_range, date_range)
        logger.info("Refreshed %s: %s days with data", tag, len(in_range))
        return SourceOutcome(series=in_range)

    def _degrade(
        self, source: MetricSource, entries: list[CacheEntry], exc: SourceError
    ) -> SourceOutcome:
        if entries:
            logger.warning(
                "Fetch failed for %s, serving %s cached days: %s",
                source.source_tag,
                len(entries),
                exc,
            )
            return SourceOutcome(
                series=[e.metric for e in entries if e.metric],
                error=str(exc),
                stale=True,
            )

        if isinstance(exc, RateLimited) and source.policy.surface_uncached_rate_limit:
            logger.error("Rate limited on %s with nothing cached", source.source_tag)
            raise exc

        logger.warning("Fetch failed for %s, nothing cached: %s", source.source_tag, exc)
        return SourceOutcome(error=str(exc))

    async def _store(
        self, tag: str, series: list[DailyMetric], date_range: DateRange
    ) -> None:
        by_date: dict[date, DailyMetric] = {m.date: m for m in series}
        for day in date_range.dates():
            await self.cache.put(tag, day, by_date.get(day))

    async def get_email_breakdown(
        self, date_range: DateRange, tags: Iterable[str] = (), force: bool = False
    ) -> list[dict[str, Any]]:
        """Per-tag email totals and rates; 'overall' always comes first."""
        email = self._require(EMAIL)

        labels = _tag_labels(tags)
        tagged = [email.for_tag(None if t == "overall" else t) for t in labels]

        outcomes = await _gather(
            self._load(source, date_range, force=force) for source in tagged
        )

        breakdown = []
        for label, outcome in zip(labels, outcomes):
            summary = summarize(merge({EMAIL: outcome.series}, date_range), [EMAIL])
            breakdown.append(
                {
                    "tag": label,
                    **summary.totals[EMAIL],
                    **summary.rates,
                    "error": outcome.error,
                }
            )
        return breakdown

    async def get_sales_details(self, date_range: DateRange) -> dict[str, Any]:
        """Product stats and most recent transactions within the range."""
        sales = self._require(SALES)

        transactions = parse_transactions(
            await sales.client.fetch_csv(), numbers=sales.numbers
        )
        in_range = [t for t in transactions if t.date and t.date in date_range]
        return {
            "products": product_stats(in_range),
            "recent_transactions": recent_transactions(in_range),
        }

    async def validate_ads_token(self) -> dict[str, Any]:
        ads = self._require(ADS)
        return await ads.client.validate_token()

    def update_ads_token(self, access_token: str) -> None:
        """Install a new ads credential and clear the terminal failure."""
        ads = self._require(ADS)
        ads.client.update_access_token(access_token)
        ads.credential_error = None

    def _require(self, name: str) -> MetricSource:
        source = self.sources.get(name)
        if source is None:
            raise LookupError(f"Source not configured: {name}")
        return source

