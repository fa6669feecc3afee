"""Unit tests for the rate calculator."""
from datetime import date

import pytest

from pulse_core.metrics.merger import merge
from pulse_core.metrics.rates import (
    bounce_rate,
    click_rate,
    conversion_rate,
    derive_rates,
    email_rates,
    open_rate,
    rate,
    ratio,
    roas,
    round_half_up,
    sales_rates,
    summarize,
    upsell_conversion_rate,
)
from pulse_core.metrics.schema import DailyMetric


@pytest.mark.parametrize("numerator", [0, 1, 250, 10**9])
def test_zero_denominator_yields_zero(numerator):
    """rate(n, 0) and ratio(n, 0) are 0, never NaN or Infinity."""
    assert rate(numerator, 0) == 0
    assert ratio(numerator, 0) == 0


def test_email_scenario_rates():
    """sent=1000, bounced=50, opened=300, clicked=100 -> 31.58/10.53/5.00."""
    rates = email_rates({"sent": 1000, "bounced": 50, "opened": 300, "clicked": 100})

    assert rates["open_rate"] == 31.58
    assert rates["click_rate"] == 10.53
    assert rates["bounce_rate"] == 5.00


def test_email_rates_prefer_reported_delivered():
    rates = email_rates(
        {"sent": 100, "bounced": 0, "delivered": 50, "opened": 25, "clicked": 5}
    )
    assert rates["open_rate"] == 50.0
    assert rates["click_rate"] == 10.0


def test_individual_rate_functions():
    assert open_rate(300, 950) == 31.58
    assert click_rate(100, 950) == 10.53
    assert bounce_rate(50, 1000) == 5.0
    assert upsell_conversion_rate(1, 4) == 25.0


def test_round_half_up():
    assert round_half_up(2.675) == 2.68
    assert round_half_up(0.125) == 0.13
    assert round_half_up(1.0) == 1.0


def test_conversion_rate_without_abandons_is_100():
    assert conversion_rate(0, 0) == 100
    assert conversion_rate(5, 0) == 100
    assert conversion_rate(3, 1) == 75.0
    assert conversion_rate(0, 4) == 0


def test_roas_with_zero_spend_is_zero():
    assert roas(500, 0) == 0
    assert roas(500, 125) == 4.0


def test_roas_is_not_rounded():
    assert roas(100, 3) == 100 / 3
    assert derive_rates({"sales": {"revenue": 100}, "ads": {"spend": 3}})["roas"] == 100 / 3


def test_sales_rates_average_order_value():
    rates = sales_rates(
        {"revenue": 300, "transactions": 4, "purchases": 3, "upsells": 1, "abandoned": 1}
    )
    assert rates["average_order_value"] == 75.0
    assert rates["conversion_rate"] == 75.0
    assert rates["upsell_conversion_rate"] == 33.33


def test_derive_rates_roas_needs_both_sources():
    sales_only = derive_rates({"sales": {"revenue": 500}})
    assert "roas" not in sales_only

    both = derive_rates({"sales": {"revenue": 500}, "ads": {"spend": 0}})
    assert both["roas"] == 0

    both = derive_rates({"sales": {"revenue": 500}, "ads": {"spend": 200}})
    assert both["roas"] == 2.5


def test_ads_rates_guard_zero_denominators():
    rates = derive_rates({"ads": {"spend": 0, "impressions": 0, "clicks": 0}})
    assert rates == {
        "ctr": 0,
        "cpc": 0,
        "cost_per_lead": 0,
        "cost_per_purchase": 0,
        "platform_roas": 0,
    }


def test_summarize_totals_and_zero_blocks():
    rows = merge(
        {
            "email": [
                DailyMetric("email", date(2024, 1, 1), {"sent": 600, "bounced": 30,
                                                        "delivered": 570, "opened": 180,
                                                        "clicked": 60}),
                DailyMetric("email", date(2024, 1, 2), {"sent": 400, "bounced": 20,
                                                        "delivered": 380, "opened": 120,
                                                        "clicked": 40}),
            ]
        }
    )

    summary = summarize(rows, ["email", "sales"])

    assert summary.totals["email"]["sent"] == 1000
    assert summary.totals["email"]["delivered"] == 950
    assert summary.totals["sales"]["revenue"] == 0
    assert summary.rates["open_rate"] == 31.58
    assert summary.rates["conversion_rate"] == 100
    assert "rates" in summary.to_dict()
