"""Daily merger: per-source series -> one row per calendar date."""
import logging
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Optional

from .schema import SOURCE_COUNTERS, DailyMetric, DateRange, MergedDailyRow


logger = logging.getLogger(__name__)


def _counter_names(source: str, series: Sequence[DailyMetric]) -> list[str]:
    names = list(SOURCE_COUNTERS.get(source, ()))
    for metric in series:
        for name in metric.counters:
            if name not in names:
                names.append(name)
    return names


def merge(
    per_source: Mapping[str, Sequence[DailyMetric]],
    date_range: Optional[DateRange] = None,
) -> list[MergedDailyRow]:
    """Merge per-source daily series keyed by date.

    The result holds one row per date present in any source (within
    date_range when given), ascending. Every row carries every input source;
    a source with no record for a date contributes zeros. Duplicate records
    for the same (source, date) are summed.
    """
    sources = sorted(per_source)
    names = {source: _counter_names(source, per_source[source]) for source in sources}

    by_date: dict[date, dict[str, dict[str, float]]] = {}
    for source in sources:
        for metric in per_source[source]:
            if date_range is not None and metric.date not in date_range:
                continue
            row = by_date.setdefault(
                metric.date,
                {s: {name: 0 for name in names[s]} for s in sources},
            )
            block = row[source]
            for name, value in metric.counters.items():
                block[name] = block.get(name, 0) + value

    merged = [MergedDailyRow(date=day, sources=by_date[day]) for day in sorted(by_date)]
    logger.debug("Merged %s sources into %s daily rows", len(sources), len(merged))
    return merged
