from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException

from .config import settings
from .logs import json_log

_RESOURCES = {
    # resource -> (plan column, noun, verb phrase, count query)
    "stores": (
        "max_stores",
        "stores",
        "create more stores",
        "SELECT COUNT(*) AS n FROM stores WHERE tenant_id = %s AND is_active = true",
    ),
    "users": (
        "max_users",
        "users",
        "add more users",
        "SELECT COUNT(*) AS n FROM users WHERE tenant_id = %s AND is_active = true",
    ),
}


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    current_count: int
    max_allowed: int
    reason: Optional[str] = None
    plan_name: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def evaluate_quota(resource: str, current_count: int, max_allowed: int, plan_name: str) -> QuotaCheck:
    _col, noun, verb, _sql = _RESOURCES[resource]
    if current_count >= max_allowed:
        return QuotaCheck(
            allowed=False,
            current_count=current_count,
            max_allowed=max_allowed,
            reason=(
                f"{noun[:-1].capitalize()} limit reached. Your {plan_name} plan allows {max_allowed} {noun}. "
                f"Upgrade to {verb}."
            ),
            plan_name=plan_name,
        )
    return QuotaCheck(allowed=True, current_count=current_count, max_allowed=max_allowed, plan_name=plan_name)


def _active_plan(cur, tenant_id: str):
    cur.execute(
        """
        SELECT p.name, p.max_stores, p.max_users
        FROM subscriptions s
        JOIN subscription_plans p ON p.id = s.plan_id
        WHERE s.tenant_id = %s
          AND s.status = 'active'
          AND (s.end_date IS NULL OR s.end_date > now())
        ORDER BY s.created_at DESC
        LIMIT 1
        """,
        (tenant_id,),
    )
    return cur.fetchone()


def _trial_window_open(cur, tenant_id: str) -> bool:
    cur.execute("SELECT status, trial_ends_at FROM tenants WHERE id = %s", (tenant_id,))
    t = cur.fetchone()
    if not t or t["status"] != "trial":
        return False
    ends = t.get("trial_ends_at")
    return ends is None or ends > datetime.now(timezone.utc)


def check_quota(cur, tenant_id: str, resource: str) -> QuotaCheck:
    """
    Compare the tenant's active rows of `resource` ("stores" or "users") with its plan ceiling.

    Tenants without an active subscription fall back to the trial limits while the
    trial window is open; otherwise nothing may be created.
    """
    col, noun, _verb, count_sql = _RESOURCES[resource]
    cur.execute(count_sql, (tenant_id,))
    current = int((cur.fetchone() or {}).get("n") or 0)

    plan = _active_plan(cur, tenant_id)
    if plan:
        return evaluate_quota(resource, current, int(plan[col]), plan["name"])

    if _trial_window_open(cur, tenant_id):
        limit = settings.trial_max_stores if resource == "stores" else settings.trial_max_users
        return evaluate_quota(resource, current, limit, "Trial")

    return QuotaCheck(
        allowed=False,
        current_count=current,
        max_allowed=0,
        reason=f"No active subscription found. Please subscribe to a plan to create {noun}.",
    )


def enforce_quota(cur, user, resource: str, tenant_id: Optional[str] = None) -> Optional[QuotaCheck]:
    """Raise 403 when `user` may not create another `resource`. Administrators are never limited."""
    if user.get("role") == "administrator":
        return None
    tid = tenant_id or user.get("tenant_id")
    if not tid:
        raise HTTPException(status_code=400, detail="user is not bound to a tenant")
    res = check_quota(cur, tid, resource)
    if not res.allowed:
        json_log(
            "info",
            "quota.rejected",
            tenant_id=tid,
            resource=resource,
            current_count=res.current_count,
            max_allowed=res.max_allowed,
        )
        raise HTTPException(
            status_code=403,
            detail={
                "message": res.reason,
                "quota_info": {
                    "current_count": res.current_count,
                    "max_allowed": res.max_allowed,
                    "exceeded": True,
                },
            },
        )
    return res
