"""Rate calculator: derived KPIs from merged totals.

Every division is guarded: a zero denominator yields 0 (never NaN or
Infinity). Results are rounded half-up to two decimals, except ROAS,
which is the plain revenue / spend quotient.
"""
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .adapters import delivered_count
from .schema import ADS, EMAIL, SALES, SOURCE_COUNTERS, MergedDailyRow, SummaryTotals


_CENTS = Decimal("0.01")


def round_half_up(value: float) -> float:
    return float(Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP))


def ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, 0 when the denominator is not positive."""
    if denominator <= 0:
        return 0.0
    return round_half_up(numerator / denominator)


def rate(numerator: float, denominator: float) -> float:
    """Percentage of numerator over denominator, 0 on a zero denominator."""
    if denominator <= 0:
        return 0.0
    return round_half_up(numerator / denominator * 100)


def open_rate(opened: float, delivered: float) -> float:
    return rate(opened, delivered)


def click_rate(clicked: float, delivered: float) -> float:
    return rate(clicked, delivered)


def bounce_rate(bounced: float, sent: float) -> float:
    return rate(bounced, sent)


def conversion_rate(purchases: float, abandoned: float) -> float:
    """Checkout conversion; reads 100 when there is no checkout data at all."""
    if purchases == 0 and abandoned == 0:
        return 100.0
    return rate(purchases, purchases + abandoned)


def upsell_conversion_rate(upsells: float, purchases: float) -> float:
    return rate(upsells, purchases)


def roas(revenue: float, spend: float) -> float:
    """Return on ad spend; 0 when nothing was spent."""
    if not spend:
        return 0.0
    return revenue / spend


def email_rates(totals: Mapping[str, float]) -> dict[str, float]:
    sent = totals.get("sent", 0)
    bounced = totals.get("bounced", 0)
    delivered = totals.get("delivered")
    if delivered is None:
        delivered = delivered_count(sent, bounced)
    return {
        "open_rate": open_rate(totals.get("opened", 0), delivered),
        "click_rate": click_rate(totals.get("clicked", 0), delivered),
        "bounce_rate": bounce_rate(bounced, sent),
    }


def sales_rates(totals: Mapping[str, float]) -> dict[str, float]:
    purchases = totals.get("purchases", 0)
    return {
        "conversion_rate": conversion_rate(purchases, totals.get("abandoned", 0)),
        "upsell_conversion_rate": upsell_conversion_rate(
            totals.get("upsells", 0), purchases
        ),
        "average_order_value": ratio(
            totals.get("revenue", 0), totals.get("transactions", 0)
        ),
    }


def ads_rates(totals: Mapping[str, float]) -> dict[str, float]:
    spend = totals.get("spend", 0)
    return {
        "ctr": rate(totals.get("clicks", 0), totals.get("impressions", 0)),
        "cpc": ratio(spend, totals.get("clicks", 0)),
        "cost_per_lead": ratio(spend, totals.get("leads", 0)),
        "cost_per_purchase": ratio(spend, totals.get("purchases", 0)),
        "platform_roas": ratio(totals.get("purchase_value", 0), spend),
    }


def derive_rates(totals: Mapping[str, Mapping[str, float]]) -> dict[str, float]:
    """Rates for whichever sources are present in totals."""
    rates: dict[str, float] = {}
    if EMAIL in totals:
        rates.update(email_rates(totals[EMAIL]))
    if SALES in totals:
        rates.update(sales_rates(totals[SALES]))
    if ADS in totals:
        rates.update(ads_rates(totals[ADS]))
    if SALES in totals and ADS in totals:
        rates["roas"] = roas(totals[SALES].get("revenue", 0), totals[ADS].get("spend", 0))
    return rates


def _tidy(value: float) -> float:
    if isinstance(value, float):
        return round(value, 2)
    return value


def summarize(
    rows: Iterable[MergedDailyRow], sources: Optional[Iterable[str]] = None
) -> SummaryTotals:
    """Sum every counter across the merged rows and derive rates.

    sources guarantees a (zero) totals block for sources with no rows.
    """
    totals: dict[str, dict[str, float]] = {}
    for source in sources or ():
        totals[source] = {name: 0 for name in SOURCE_COUNTERS.get(source, ())}

    for row in rows:
        for source, counters in row.sources.items():
            block = totals.setdefault(source, {})
            for name, value in counters.items():
                block[name] = block.get(name, 0) + value

    totals = {
        source: {name: _tidy(value) for name, value in block.items()}
        for source, block in totals.items()
    }
    return SummaryTotals(totals=totals, rates=derive_rates(totals))
