"""Canonical record types shared by adapters, merger, cache and pipeline."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterator, Optional


EMAIL = "email"
SALES = "sales"
ADS = "ads"

# Canonical counters per source. Absent sources are zero-filled with these.
SOURCE_COUNTERS: dict[str, tuple[str, ...]] = {
    EMAIL: (
        "sent",
        "delivered",
        "opened",
        "clicked",
        "bounced",
        "spam",
        "unsubscribed",
    ),
    SALES: (
        "revenue",
        "transactions",
        "purchases",
        "upsells",
        "abandoned",
        "refunds",
    ),
    ADS: (
        "spend",
        "impressions",
        "clicks",
        "reach",
        "leads",
        "purchases",
        "purchase_value",
    ),
}

ALL_SOURCES = (EMAIL, SALES, ADS)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"start date {self.start.isoformat()} is after end date "
                f"{self.end.isoformat()}"
            )

    @classmethod
    def last_days(cls, days: int, today: Optional[date] = None) -> "DateRange":
        if days < 0:
            raise ValueError("days must be non-negative")
        today = today or date.today()
        return cls(today - timedelta(days=days), today)

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    def dates(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)


@dataclass(frozen=True)
class DailyMetric:
    """One calendar date's counters from a single source."""

    source: str
    date: date
    counters: dict[str, float]

    def get(self, name: str) -> float:
        return self.counters.get(name, 0)


@dataclass
class MergedDailyRow:
    """All sources' counters for one calendar date."""

    date: date
    sources: dict[str, dict[str, float]]

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), **self.sources}


@dataclass
class SummaryTotals:
    """Per-source sums across a merged series, plus derived rates."""

    totals: dict[str, dict[str, float]]
    rates: dict[str, float]

    def to_dict(self) -> dict:
        return {**self.totals, "rates": self.rates}


@dataclass(frozen=True)
class CacheEntry:
    """Cached day for a source tag.

    metric is None when the day was fetched but the source had no record.
    """

    source_tag: str
    date: date
    metric: Optional[DailyMetric]
    updated_at: datetime


@dataclass
class MetricsReport:
    """Query result handed to the API layer."""

    summary: SummaryTotals
    daily: list[MergedDailyRow]
    date_range: DateRange
    errors: dict[str, str] = field(default_factory=dict)
    stale_sources: list[str] = field(default_factory=list)
    generated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SalesTransaction:
    """One row of the sales CSV export."""

    event: str
    item_name: str
    item_plan_name: str
    date: Optional[date]
    confirmed: bool
    price: float

    @property
    def is_sale(self) -> bool:
        return self.event in ("purchase", "upsellaccept")


@dataclass
class ProductStats:
    """Revenue and quantity for one product name."""

    name: str
    revenue: float = 0.0
    quantity: int = 0

    @property
    def average_price(self) -> float:
        return self.revenue / self.quantity if self.quantity else 0.0
