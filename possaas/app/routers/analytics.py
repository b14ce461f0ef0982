"""
Platform-wide SaaS analytics for administrators.

Every endpoint takes `timeRange` (7days/30days/90days/1year). Period-over-period
changes compare the window to the window of equal length right before it.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..db import get_conn
from ..deps import require_admin
from ..validation import TimeRange

router = APIRouter(prefix="/api/analytics", tags=["analytics"], dependencies=[Depends(require_admin)])

RANGE_DAYS = {"7days": 7, "30days": 30, "90days": 90, "1year": 365}
# Customer lifetime assumed when nobody churned in the window.
DEFAULT_LIFETIME_MONTHS = 36

# Yearly plans contribute a twelfth of their price to monthly recurring revenue.
_MONTHLY_PRICE = "CASE WHEN p.interval = 'yearly' THEN p.price / 12 ELSE p.price END"


def range_bounds(time_range: str, now: Optional[datetime] = None):
    """Return (previous_start, start, now) for the requested window."""
    now = now or datetime.now(timezone.utc)
    span = timedelta(days=RANGE_DAYS.get(time_range, 30))
    start = now - span
    return start - span, start, now


def pct_change(current, previous) -> float:
    current, previous = float(current or 0), float(previous or 0)
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def _metric(value, change: float, higher_is_better: bool = True) -> dict:
    good = change >= 0 if higher_is_better else change <= 0
    return {"value": value, "change": change, "trend": "up" if good else "down"}


def churn_rate(active: int, cancelled: int) -> float:
    if active <= 0:
        return 0.0
    return round(cancelled / (active + cancelled) * 100, 2)


def lifetime_value(arpu: Decimal, churn: float) -> Decimal:
    if churn > 0:
        return (arpu * 100 / Decimal(str(churn))).quantize(Decimal("0.01"))
    return (arpu * DEFAULT_LIFETIME_MONTHS).quantize(Decimal("0.01"))


def build_metrics(cur_row: dict, prev_row: dict) -> dict:
    """
    Turn the raw aggregates of the current and previous window into the metrics payload.

    Each row carries: active, mrr, new_users, total_users, cancelled, revenue.
    """
    mrr = Decimal(cur_row["mrr"] or 0).quantize(Decimal("0.01"))
    prev_mrr = Decimal(prev_row["mrr"] or 0).quantize(Decimal("0.01"))
    active = int(cur_row["active"] or 0)
    prev_active = int(prev_row["active"] or 0)
    cancelled = int(cur_row["cancelled"] or 0)
    prev_cancelled = int(prev_row["cancelled"] or 0)

    arpu = (mrr / active).quantize(Decimal("0.01")) if active else Decimal("0.00")
    prev_arpu = (prev_mrr / prev_active).quantize(Decimal("0.01")) if prev_active else Decimal("0.00")
    churn = churn_rate(active, cancelled)
    prev_churn = churn_rate(prev_active, prev_cancelled)
    clv = lifetime_value(arpu, churn)
    prev_clv = lifetime_value(prev_arpu, prev_churn) if prev_active else Decimal("0.00")

    mrr_change = pct_change(mrr, prev_mrr)
    users_change = pct_change(cur_row["new_users"], prev_row["new_users"])
    return {
        "mrr": _metric(mrr, mrr_change),
        "arr": _metric(mrr * 12, mrr_change),
        "activeSubscribers": _metric(active, pct_change(active, prev_active)),
        "churnRate": _metric(churn, round(churn - prev_churn, 2), higher_is_better=False),
        "arpu": _metric(arpu, pct_change(arpu, prev_arpu)),
        "clv": _metric(clv, pct_change(clv, prev_clv)),
        "totalUsers": _metric(int(cur_row["total_users"] or 0), users_change),
        "newUsers": _metric(int(cur_row["new_users"] or 0), users_change),
        "periodRevenue": _metric(
            Decimal(cur_row["revenue"] or 0), pct_change(cur_row["revenue"], prev_row["revenue"])
        ),
    }


def _window_aggregates(cur, start: datetime, end: datetime, *, current: bool) -> dict:
    # The current window measures live subscriptions; the previous one only those created in it.
    created_filter = "" if current else "AND s.created_at >= %(start)s AND s.created_at < %(end)s"
    cur.execute(
        f"""
        SELECT
          (SELECT COUNT(*) FROM subscriptions s
            WHERE s.status = 'active' {created_filter}) AS active,
          (SELECT COALESCE(SUM({_MONTHLY_PRICE}), 0)
             FROM subscriptions s JOIN subscription_plans p ON p.id = s.plan_id
            WHERE s.status = 'active' {created_filter}) AS mrr,
          (SELECT COUNT(*) FROM users WHERE created_at < %(end)s) AS total_users,
          (SELECT COUNT(*) FROM users WHERE created_at >= %(start)s AND created_at < %(end)s) AS new_users,
          (SELECT COUNT(*) FROM subscriptions
            WHERE status = 'cancelled' AND updated_at >= %(start)s AND updated_at < %(end)s) AS cancelled,
          (SELECT COALESCE(SUM(amount), 0) FROM billing_history
            WHERE status = 'paid' AND created_at >= %(start)s AND created_at < %(end)s) AS revenue
        """,
        {"start": start, "end": end},
    )
    return cur.fetchone()


@router.get("/metrics")
def saas_metrics(time_range: TimeRange = Query("30days", alias="timeRange")):
    prev_start, start, now = range_bounds(time_range)
    with get_conn() as conn:
        with conn.cursor() as cur:
            current = _window_aggregates(cur, start, now, current=True)
            previous = _window_aggregates(cur, prev_start, start, current=False)
    return build_metrics(current, previous)


@router.get("/users")
def user_analytics(time_range: TimeRange = Query("30days", alias="timeRange")):
    _prev, start, _now = range_bounds(time_range)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT created_at::date AS date, COUNT(*) AS count
                FROM users
                WHERE created_at >= %s
                GROUP BY created_at::date
                ORDER BY created_at::date
                """,
                (start,),
            )
            trends = cur.fetchall()
            cur.execute("SELECT role, COUNT(*) AS count FROM users GROUP BY role ORDER BY role")
            roles = cur.fetchall()
    return {"trends": trends, "roleDistribution": roles}


@router.get("/subscriptions")
def subscription_analytics(time_range: TimeRange = Query("30days", alias="timeRange")):
    _prev, start, _now = range_bounds(time_range)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT created_at::date AS date, COUNT(*) AS count
                FROM subscriptions
                WHERE created_at >= %s
                GROUP BY created_at::date
                ORDER BY created_at::date
                """,
                (start,),
            )
            trends = cur.fetchall()
            cur.execute(
                """
                SELECT p.name AS plan_name, COUNT(*) AS count, COALESCE(SUM(p.price), 0) AS revenue
                FROM subscriptions s
                JOIN subscription_plans p ON p.id = s.plan_id
                WHERE s.status = 'active'
                GROUP BY p.id, p.name
                ORDER BY count DESC
                """
            )
            plans = cur.fetchall()
            cur.execute("SELECT status, COUNT(*) AS count FROM subscriptions GROUP BY status ORDER BY status")
            statuses = cur.fetchall()
    return {"trends": trends, "planDistribution": plans, "statusDistribution": statuses}


@router.get("/revenue")
def revenue_analytics(time_range: TimeRange = Query("30days", alias="timeRange")):
    _prev, start, _now = range_bounds(time_range)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT created_at::date AS date, SUM(amount) AS revenue
                FROM billing_history
                WHERE status = 'paid' AND created_at >= %s
                GROUP BY created_at::date
                ORDER BY created_at::date
                """,
                (start,),
            )
            revenue = cur.fetchall()
            cur.execute(
                f"""
                SELECT date_trunc('month', s.created_at) AS month, SUM({_MONTHLY_PRICE}) AS mrr
                FROM subscriptions s
                JOIN subscription_plans p ON p.id = s.plan_id
                WHERE s.status = 'active' AND s.created_at >= %s
                GROUP BY date_trunc('month', s.created_at)
                ORDER BY month
                """,
                (start,),
            )
            mrr = cur.fetchall()
    return {"revenueTrends": revenue, "mrrTrends": mrr}
