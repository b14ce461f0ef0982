from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from possaas.app.routers.analytics import (
    DEFAULT_LIFETIME_MONTHS,
    build_metrics,
    churn_rate,
    lifetime_value,
    pct_change,
    range_bounds,
)


def _row(**kw):
    base = {"active": 0, "mrr": 0, "new_users": 0, "total_users": 0, "cancelled": 0, "revenue": 0}
    base.update(kw)
    return base


@pytest.mark.parametrize("time_range,days", [("7days", 7), ("30days", 30), ("90days", 90), ("1year", 365)])
def test_range_bounds_are_back_to_back_windows(time_range, days):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    prev_start, start, end = range_bounds(time_range, now=now)
    assert end == now
    assert end - start == timedelta(days=days)
    assert start - prev_start == timedelta(days=days)


def test_pct_change_with_empty_previous_window_is_zero():
    assert pct_change(10, 0) == 0.0
    assert pct_change(None, None) == 0.0
    assert pct_change(150, 100) == 50.0
    assert pct_change(Decimal("75"), Decimal("100")) == -25.0


def test_churn_and_lifetime_value():
    assert churn_rate(0, 5) == 0.0
    assert churn_rate(90, 10) == 10.0
    assert lifetime_value(Decimal("50.00"), 10.0) == Decimal("500.00")
    assert lifetime_value(Decimal("50.00"), 0.0) == Decimal("50.00") * DEFAULT_LIFETIME_MONTHS


def test_build_metrics_payload():
    metrics = build_metrics(
        _row(active=4, mrr=Decimal("400"), new_users=6, total_users=20, cancelled=0, revenue=Decimal("1200")),
        _row(active=2, mrr=Decimal("200"), new_users=3, total_users=14, cancelled=1, revenue=Decimal("600")),
    )
    assert metrics["mrr"] == {"value": Decimal("400.00"), "change": 100.0, "trend": "up"}
    assert metrics["arr"]["value"] == Decimal("4800.00")
    assert metrics["activeSubscribers"]["value"] == 4
    assert metrics["arpu"]["value"] == Decimal("100.00")
    assert metrics["clv"]["value"] == Decimal("3600.00")
    assert metrics["newUsers"]["change"] == 100.0
    assert metrics["totalUsers"]["value"] == 20
    assert metrics["periodRevenue"]["change"] == 100.0


def test_falling_churn_trends_up():
    metrics = build_metrics(_row(active=9, cancelled=1), _row(active=8, cancelled=2))
    assert metrics["churnRate"]["value"] == 10.0
    assert metrics["churnRate"]["change"] == -10.0
    assert metrics["churnRate"]["trend"] == "up"


def test_no_subscribers_gives_zeroed_metrics():
    metrics = build_metrics(_row(), _row())
    assert metrics["arpu"]["value"] == Decimal("0.00")
    assert metrics["clv"]["value"] == Decimal("0.00")
    assert metrics["mrr"]["trend"] == "up"
