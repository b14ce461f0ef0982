from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from possaas.app.quotas import check_quota, enforce_quota, evaluate_quota
from possaas.tests.fakes import FakeCursor

OWNER = {"user_id": "u-1", "tenant_id": "t-1", "role": "owner"}


def _cursor(count, plan=None, tenant=None):
    return FakeCursor(
        [
            ("select count(*) as n from", [{"n": count}]),
            ("from subscriptions s join subscription_plans p", [plan] if plan else []),
            ("select status, trial_ends_at from tenants", [tenant] if tenant else []),
        ]
    )


@pytest.mark.parametrize(
    "current,limit,allowed",
    [(0, 3, True), (2, 3, True), (3, 3, False), (4, 3, False), (0, 0, False)],
)
def test_quota_rejects_exactly_when_count_reaches_limit(current, limit, allowed):
    res = evaluate_quota("stores", current, limit, "Basic")
    assert res.allowed is allowed
    assert res.current_count == current
    assert res.max_allowed == limit


def test_limit_reached_reason_names_plan_and_limit():
    res = evaluate_quota("stores", 3, 3, "Basic")
    assert res.reason == "Store limit reached. Your Basic plan allows 3 stores. Upgrade to create more stores."
    res = evaluate_quota("users", 5, 5, "Pro")
    assert res.reason.startswith("User limit reached. Your Pro plan allows 5 users.")


def test_check_quota_uses_active_plan_ceiling():
    cur = _cursor(3, plan={"name": "Basic", "max_stores": 3, "max_users": 10})
    res = check_quota(cur, "t-1", "stores")
    assert res.allowed is False
    assert res.plan_name == "Basic"
    count_sql, params = cur.executed[0]
    assert "from stores where tenant_id = %s and is_active = true" in count_sql
    assert params == ("t-1",)


def test_check_quota_without_subscription_allows_nothing():
    cur = _cursor(0, tenant={"status": "active", "trial_ends_at": None})
    res = check_quota(cur, "t-1", "users")
    assert res.allowed is False
    assert res.max_allowed == 0
    assert res.reason == "No active subscription found. Please subscribe to a plan to create users."


def test_open_trial_gets_trial_limits(monkeypatch):
    from possaas.app import quotas

    monkeypatch.setattr(quotas.settings, "trial_max_stores", 1)
    ends = datetime.now(timezone.utc) + timedelta(days=5)
    assert check_quota(_cursor(0, tenant={"status": "trial", "trial_ends_at": ends}), "t-1", "stores").allowed
    res = check_quota(_cursor(1, tenant={"status": "trial", "trial_ends_at": ends}), "t-1", "stores")
    assert res.allowed is False
    assert res.max_allowed == 1


def test_ended_trial_falls_back_to_no_subscription():
    ended = datetime.now(timezone.utc) - timedelta(days=1)
    res = check_quota(_cursor(0, tenant={"status": "trial", "trial_ends_at": ended}), "t-1", "stores")
    assert res.allowed is False
    assert res.max_allowed == 0


def test_enforce_quota_raises_403_with_quota_info():
    cur = _cursor(2, plan={"name": "Basic", "max_stores": 2, "max_users": 5})
    with pytest.raises(HTTPException) as exc_info:
        enforce_quota(cur, OWNER, "stores")
    exc = exc_info.value
    assert exc.status_code == 403
    assert exc.detail["quota_info"] == {"current_count": 2, "max_allowed": 2, "exceeded": True}
    assert "Store limit reached" in exc.detail["message"]


def test_enforce_quota_passes_under_limit():
    cur = _cursor(1, plan={"name": "Basic", "max_stores": 2, "max_users": 5})
    res = enforce_quota(cur, OWNER, "stores")
    assert res.allowed is True


def test_administrators_bypass_quota_without_queries():
    cur = FakeCursor([])
    assert enforce_quota(cur, {"user_id": "a-1", "tenant_id": None, "role": "administrator"}, "stores") is None
    assert cur.executed == []
