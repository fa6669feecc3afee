"""Unit tests for the daily merger."""
from datetime import date

from pulse_core.metrics.merger import merge
from pulse_core.metrics.schema import DailyMetric, DateRange


def _email(day: int, sent: int) -> DailyMetric:
    return DailyMetric("email", date(2024, 1, day), {"sent": sent, "opened": 1})


def _ads(day: int, spend: float) -> DailyMetric:
    return DailyMetric("ads", date(2024, 1, day), {"spend": spend, "clicks": 2})


def test_merge_union_zero_fills_missing_source():
    """A on 01..03 and B on 02 -> three rows, B zero on the first and third."""
    rows = merge(
        {
            "email": [_email(1, 10), _email(2, 20), _email(3, 30)],
            "ads": [_ads(2, 5.5)],
        }
    )

    assert [row.date for row in rows] == [
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]
    assert rows[0].sources["ads"]["spend"] == 0
    assert rows[1].sources["ads"]["spend"] == 5.5
    assert rows[2].sources["ads"]["spend"] == 0
    assert rows[2].sources["email"]["sent"] == 30
    # canonical counters present even when the source never reported them
    assert rows[0].sources["ads"]["impressions"] == 0


def test_merge_is_commutative_in_source_order():
    a = {"email": [_email(1, 10)], "ads": [_ads(2, 3.0)]}
    b = {"ads": [_ads(2, 3.0)], "email": [_email(1, 10)]}

    assert [r.to_dict() for r in merge(a)] == [r.to_dict() for r in merge(b)]


def test_merge_sums_duplicate_records():
    rows = merge({"email": [_email(1, 10), _email(1, 5)]})

    assert len(rows) == 1
    assert rows[0].sources["email"]["sent"] == 15
    assert rows[0].sources["email"]["opened"] == 2


def test_merge_respects_date_range():
    rows = merge(
        {"email": [_email(1, 10), _email(5, 50)]},
        DateRange(date(2024, 1, 2), date(2024, 1, 9)),
    )

    assert [row.date for row in rows] == [date(2024, 1, 5)]


def test_merge_empty_inputs():
    assert merge({}) == []
    assert merge({"email": [], "sales": []}) == []


def test_row_to_dict_shape():
    row = merge({"email": [_email(1, 10)]})[0]

    payload = row.to_dict()

    assert payload["date"] == "2024-01-01"
    assert payload["email"]["sent"] == 10
