"""Source adapters: raw payloads -> canonical DailyMetric records.

Adapters are pure transforms. Numeric parsing goes through a number policy
so a single bad value never aborts a whole series (LenientNumbers) unless a
caller opts into StrictNumbers.
"""
import csv
import io
import logging
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence, Union

from ..sources.exceptions import MalformedRecord, SourceFormatError
from .schema import (
    ADS,
    EMAIL,
    SALES,
    SOURCE_COUNTERS,
    DailyMetric,
    ProductStats,
    SalesTransaction,
)


logger = logging.getLogger(__name__)


SALES_EVENTS = ("purchase", "upsellaccept", "abandon", "refund")
EMAIL_ENDPOINTS = ("sends", "bounces", "spam", "opens", "clicks")
BOUNCE_FIELDS = ("HardBounce", "SoftBounce", "Transient")
_DATE_FORMATS = ("%m/%d/%Y", "%Y/%m/%d", "%d.%m.%Y")


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).strip().replace("$", "").replace(",", "")
    return float(cleaned)


class LenientNumbers:
    """Malformed, missing or negative values coerce to zero."""

    def amount(self, value: Any, field: str = "") -> float:
        if value is None or value == "":
            return 0.0
        try:
            number = _to_float(value)
        except (TypeError, ValueError):
            logger.debug("Coercing malformed %s=%r to 0", field, value)
            return 0.0
        if math.isnan(number) or math.isinf(number) or number < 0:
            return 0.0
        return number

    def count(self, value: Any, field: str = "") -> int:
        return int(self.amount(value, field))


class StrictNumbers(LenientNumbers):
    """Missing values are still zero; anything unparseable raises."""

    def amount(self, value: Any, field: str = "") -> float:
        if value is None or value == "":
            return 0.0
        try:
            number = _to_float(value)
        except (TypeError, ValueError) as exc:
            raise MalformedRecord(field, value) from exc
        if math.isnan(number) or math.isinf(number) or number < 0:
            raise MalformedRecord(field, value)
        return number


LENIENT = LenientNumbers()


def parse_date(value: Any) -> date:
    """Parse a calendar date, dropping any time component.

    Raises:
        SourceFormatError: If the value is missing or not a recognizable date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        raise SourceFormatError("Missing date")

    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    head = text.split(" ")[0].split("T")[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue

    raise SourceFormatError(f"Unrecognized date: {value!r}")


def _build_metrics(source: str, by_date: dict[date, dict[str, float]]) -> list[DailyMetric]:
    names = SOURCE_COUNTERS[source]
    return [
        DailyMetric(
            source=source,
            date=day,
            counters={name: by_date[day].get(name, 0) for name in names},
        )
        for day in sorted(by_date)
    ]


def _empty_counters(source: str) -> dict[str, float]:
    return {name: 0 for name in SOURCE_COUNTERS[source]}


def _days(payload: Mapping, key: str) -> list:
    days = payload.get("Days")
    if days is None:
        return []
    if not isinstance(days, list):
        raise SourceFormatError(f"{key}.Days must be a list")
    return days


# Email


def delivered_count(sent: float, bounced: float) -> float:
    """Delivered fallback when the source does not report it directly."""
    return max(0, sent - bounced)


def normalize_email(
    payload: Any,
    range_end: Optional[date] = None,
    numbers: LenientNumbers = LENIENT,
) -> list[DailyMetric]:
    """Normalize outbound email stats.

    Accepts the per-metric endpoint bundle ({"sends": ..., "bounces": ...})
    or an aggregate outbound payload with a "Days" list. An aggregate without
    "Days" is dated at range_end.
    """
    if not isinstance(payload, Mapping):
        raise SourceFormatError("Email payload must be an object")

    if any(key in payload for key in EMAIL_ENDPOINTS):
        return _normalize_email_endpoints(payload, numbers)

    if "Days" in payload:
        rows = _days(payload, "outbound")
    elif range_end is not None:
        rows = [dict(payload, Date=range_end.isoformat())]
    else:
        raise SourceFormatError("Email payload has no Days and no range end")

    by_date: dict[date, dict[str, float]] = {}
    for row in rows:
        if not isinstance(row, Mapping):
            raise SourceFormatError("Email day row must be an object")
        day = parse_date(row.get("Date"))
        counters = by_date.setdefault(day, _empty_counters(EMAIL))

        sent = numbers.count(row.get("Sent"), "Sent")
        bounced = numbers.count(row.get("Bounced"), "Bounced")
        counters["sent"] += sent
        counters["bounced"] += bounced
        if "Delivered" in row:
            counters["delivered"] += numbers.count(row.get("Delivered"), "Delivered")
        else:
            counters["delivered"] += delivered_count(sent, bounced)
        counters["opened"] += numbers.count(row.get("Opened"), "Opened")
        counters["clicked"] += numbers.count(row.get("Clicked"), "Clicked")
        counters["spam"] += numbers.count(row.get("SpamComplaints"), "SpamComplaints")
        counters["unsubscribed"] += numbers.count(
            row.get("Unsubscribed"), "Unsubscribed"
        )

    return _build_metrics(EMAIL, by_date)


def _normalize_email_endpoints(
    payload: Mapping, numbers: LenientNumbers
) -> list[DailyMetric]:
    by_date: dict[date, dict[str, float]] = {}

    def rows_for(key: str) -> Iterable[tuple[dict[str, float], Mapping]]:
        section = payload.get(key) or {}
        if not isinstance(section, Mapping):
            raise SourceFormatError(f"{key} payload must be an object")
        for row in _days(section, key):
            if not isinstance(row, Mapping):
                raise SourceFormatError(f"{key} day row must be an object")
            day = parse_date(row.get("Date"))
            yield by_date.setdefault(day, _empty_counters(EMAIL)), row

    for counters, row in rows_for("sends"):
        counters["sent"] += numbers.count(row.get("Sent"), "Sent")
    for counters, row in rows_for("bounces"):
        counters["bounced"] += sum(
            numbers.count(row.get(name), name) for name in BOUNCE_FIELDS
        )
    for counters, row in rows_for("spam"):
        counters["spam"] += numbers.count(row.get("SpamComplaint"), "SpamComplaint")
    for counters, row in rows_for("opens"):
        counters["opened"] += numbers.count(row.get("Opens"), "Opens")
    for counters, row in rows_for("clicks"):
        counters["clicked"] += numbers.count(row.get("Clicks"), "Clicks")

    for counters in by_date.values():
        counters["delivered"] = delivered_count(counters["sent"], counters["bounced"])

    return _build_metrics(EMAIL, by_date)


# Sales


def _parse_event(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    if normalized in SALES_EVENTS:
        return normalized
    # Export rows with an unknown event are counted as purchases.
    return "purchase"


def parse_transactions(
    csv_text: str, numbers: LenientNumbers = LENIENT
) -> list[SalesTransaction]:
    """Parse the sales CSV export (first row is a header)."""
    if not isinstance(csv_text, str):
        raise SourceFormatError("Sales export must be CSV text")

    rows = [row for row in csv.reader(io.StringIO(csv_text)) if any(row)]
    transactions: list[SalesTransaction] = []

    for row in rows[1:]:
        if len(row) < 6:
            logger.debug("Skipping short sales row: %s", row)
            continue

        try:
            day: Optional[date] = parse_date(row[3]) if row[3].strip() else None
        except SourceFormatError:
            logger.warning("Skipping sales row with bad date: %r", row[3])
            continue

        transactions.append(
            SalesTransaction(
                event=_parse_event(row[0]),
                item_name=row[1] or "",
                item_plan_name=row[2] or "",
                date=day,
                confirmed=row[4].strip().lower() == "true",
                price=numbers.amount(row[5], "price"),
            )
        )

    return transactions


def normalize_sales(
    payload: Union[str, Sequence[SalesTransaction]],
    numbers: LenientNumbers = LENIENT,
) -> list[DailyMetric]:
    """Bucket sales transactions into daily counters."""
    if isinstance(payload, str):
        transactions = parse_transactions(payload, numbers)
    elif isinstance(payload, Sequence):
        transactions = list(payload)
    else:
        raise SourceFormatError("Sales payload must be CSV text or transactions")

    by_date: dict[date, dict[str, float]] = {}
    for txn in transactions:
        if txn.date is None:
            continue
        counters = by_date.setdefault(txn.date, _empty_counters(SALES))

        if txn.is_sale:
            counters["revenue"] += txn.price
            counters["transactions"] += 1
        if txn.event == "purchase":
            counters["purchases"] += 1
        elif txn.event == "upsellaccept":
            counters["upsells"] += 1
        elif txn.event == "abandon":
            counters["abandoned"] += 1
        elif txn.event == "refund":
            counters["refunds"] += 1

    for counters in by_date.values():
        counters["revenue"] = round(counters["revenue"], 2)

    return _build_metrics(SALES, by_date)


def product_stats(transactions: Iterable[SalesTransaction]) -> list[ProductStats]:
    """Revenue per product for purchases and upsells, highest first."""
    products: dict[str, ProductStats] = {}
    for txn in transactions:
        if not txn.is_sale:
            continue
        stats = products.setdefault(txn.item_name, ProductStats(name=txn.item_name))
        stats.revenue += txn.price
        stats.quantity += 1

    return sorted(products.values(), key=lambda p: (-p.revenue, p.name))


def recent_transactions(
    transactions: Iterable[SalesTransaction], limit: int = 10
) -> list[SalesTransaction]:
    dated = [txn for txn in transactions if txn.date is not None]
    return sorted(dated, key=lambda t: t.date, reverse=True)[:limit]


# Ads


def _action_value(actions: Any, action_type: str, numbers: LenientNumbers) -> float:
    if not isinstance(actions, list):
        return 0.0
    for action in actions:
        if isinstance(action, Mapping) and action.get("action_type") == action_type:
            return numbers.amount(action.get("value"), action_type)
    return 0.0


def normalize_ads(
    payload: Any, numbers: LenientNumbers = LENIENT
) -> list[DailyMetric]:
    """Normalize account-level daily insight rows."""
    if isinstance(payload, Mapping):
        payload = payload.get("data")
    if not isinstance(payload, list):
        raise SourceFormatError("Ads payload must be a list of insight rows")

    by_date: dict[date, dict[str, float]] = {}
    for row in payload:
        if not isinstance(row, Mapping):
            raise SourceFormatError("Ads insight row must be an object")
        day = parse_date(row.get("date_start"))
        counters = by_date.setdefault(day, _empty_counters(ADS))

        counters["spend"] += numbers.amount(row.get("spend"), "spend")
        counters["impressions"] += numbers.count(row.get("impressions"), "impressions")
        counters["clicks"] += numbers.count(row.get("clicks"), "clicks")
        counters["reach"] += numbers.count(row.get("reach"), "reach")
        counters["leads"] += int(_action_value(row.get("actions"), "lead", numbers))
        counters["purchases"] += int(
            _action_value(row.get("actions"), "purchase", numbers)
        )
        counters["purchase_value"] += _action_value(
            row.get("action_values"), "purchase", numbers
        )

    return _build_metrics(ADS, by_date)
