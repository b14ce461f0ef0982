from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from .. import stripe_gateway
from ..db import get_conn
from ..deps import get_current_user, get_tenant_id, is_admin, require_admin, require_roles
from ..email_templates import subscription_confirmation_email
from ..logs import json_log
from ..notifications import NotificationMessage, notification_service
from ..validation import BillingStatus, CurrencyCode, Money, PlanInterval

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

_PLAN_COLUMNS = "id, name, description, price, currency, interval, max_stores, max_users, features, stripe_price_id, is_active, created_at"
PERIOD_DAYS = {"monthly": 30, "yearly": 365}


class PlanIn(BaseModel):
    name: str
    price: Money
    description: Optional[str] = None
    currency: CurrencyCode = "IDR"
    interval: PlanInterval = "monthly"
    max_stores: int = Field(default=1, ge=0)
    max_users: int = Field(default=5, ge=0)
    features: List[str] = []
    stripe_price_id: Optional[str] = None
    is_active: bool = True


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[Money] = None
    description: Optional[str] = None
    currency: Optional[CurrencyCode] = None
    interval: Optional[PlanInterval] = None
    max_stores: Optional[int] = Field(default=None, ge=0)
    max_users: Optional[int] = Field(default=None, ge=0)
    features: Optional[List[str]] = None
    stripe_price_id: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("/plans")
def list_active_plans():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_PLAN_COLUMNS} FROM subscription_plans WHERE is_active = true ORDER BY price")
            return {"plans": cur.fetchall()}


@router.get("/plans/all", dependencies=[Depends(require_admin)])
def list_all_plans():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_PLAN_COLUMNS} FROM subscription_plans ORDER BY is_active DESC, price")
            return {"plans": cur.fetchall()}


@router.post("/plans", status_code=201, dependencies=[Depends(require_admin)])
def create_plan(data: PlanIn):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO subscription_plans
                  (id, name, description, price, currency, interval, max_stores, max_users, features, stripe_price_id, is_active)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_PLAN_COLUMNS}
                """,
                (
                    name,
                    data.description,
                    data.price,
                    data.currency,
                    data.interval,
                    data.max_stores,
                    data.max_users,
                    [f.strip() for f in data.features if f.strip()],
                    data.stripe_price_id,
                    data.is_active,
                ),
            )
            return {"plan": cur.fetchone()}


@router.put("/plans/{plan_id}", dependencies=[Depends(require_admin)])
def update_plan(plan_id: str, data: PlanUpdate):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE subscription_plans
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                RETURNING {_PLAN_COLUMNS}
                """,
                list(patch.values()) + [plan_id],
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="plan not found")
            return {"plan": row}


@router.get("/current")
def current_subscription(tenant_id: str = Depends(get_tenant_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id, s.status, s.start_date, s.end_date, s.auto_renew, s.stripe_subscription_id,
                       p.id AS plan_id, p.name AS plan_name, p.price, p.currency, p.interval,
                       p.max_stores, p.max_users, p.features
                FROM subscriptions s
                JOIN subscription_plans p ON p.id = s.plan_id
                WHERE s.tenant_id = %s AND s.status = 'active'
                ORDER BY s.created_at DESC
                LIMIT 1
                """,
                (tenant_id,),
            )
            sub = cur.fetchone()
            cur.execute("SELECT status, trial_ends_at FROM tenants WHERE id = %s", (tenant_id,))
            tenant = cur.fetchone() or {}
    return {"subscription": sub, "tenant_status": tenant.get("status"), "trial_ends_at": tenant.get("trial_ends_at")}


def _load_plan(cur, plan_id: str):
    cur.execute(f"SELECT {_PLAN_COLUMNS} FROM subscription_plans WHERE id = %s", (plan_id,))
    plan = cur.fetchone()
    if not plan or not plan["is_active"]:
        raise HTTPException(status_code=404, detail="plan not found")
    return plan


def _load_tenant(cur, tenant_id: str):
    cur.execute(
        "SELECT id, business_name, email, stripe_customer_id FROM tenants WHERE id = %s FOR UPDATE",
        (tenant_id,),
    )
    tenant = cur.fetchone()
    if not tenant:
        raise HTTPException(status_code=404, detail="tenant not found")
    return tenant


class PaymentIntentIn(BaseModel):
    plan_id: str


@router.post("/payment-intent")
def create_payment_intent(data: PaymentIntentIn, user=Depends(require_roles("owner"))):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                plan = _load_plan(cur, data.plan_id)
                if plan["price"] <= 0:
                    raise HTTPException(status_code=400, detail="plan does not require payment")
                tenant = _load_tenant(cur, user["tenant_id"])
                customer_id = stripe_gateway.ensure_customer(cur, tenant)
                intent = stripe_gateway.create_payment_intent(
                    amount=plan["price"],
                    currency=plan["currency"],
                    customer_id=customer_id,
                    metadata={"tenant_id": str(tenant["id"]), "plan_id": str(plan["id"])},
                )
    return {
        "client_secret": intent["client_secret"],
        "payment_intent_id": intent["id"],
        "amount": plan["price"],
        "currency": plan["currency"],
    }


def verify_payment_intent(intent, *, plan, tenant_id: str) -> None:
    """The intent must have succeeded for exactly this plan's price, on behalf of this tenant."""
    if intent["status"] != "succeeded":
        raise HTTPException(status_code=400, detail="payment has not succeeded")
    expected = stripe_gateway.amount_to_minor(plan["price"], plan["currency"])
    if int(intent["amount"]) != expected or str(intent["currency"]).upper() != str(plan["currency"]).upper():
        raise HTTPException(status_code=400, detail="payment amount does not match plan price")
    meta_tenant = (intent.get("metadata") or {}).get("tenant_id")
    if meta_tenant and str(meta_tenant) != str(tenant_id):
        raise HTTPException(status_code=400, detail="payment belongs to another tenant")


class SubscribeIn(BaseModel):
    plan_id: str
    payment_intent_id: Optional[str] = None


@router.post("/subscribe", status_code=201)
def subscribe(data: SubscribeIn, user=Depends(require_roles("owner"))):
    tenant_id = user["tenant_id"]
    now = datetime.now(timezone.utc)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                plan = _load_plan(cur, data.plan_id)
                tenant = _load_tenant(cur, tenant_id)
                paid = plan["price"] > 0
                if paid:
                    if not data.payment_intent_id:
                        raise HTTPException(status_code=400, detail="payment_intent_id is required")
                    intent = stripe_gateway.retrieve_payment_intent(data.payment_intent_id)
                    verify_payment_intent(intent, plan=plan, tenant_id=tenant_id)

                cur.execute(
                    """
                    UPDATE subscriptions
                    SET status = 'cancelled', auto_renew = false, updated_at = now()
                    WHERE tenant_id = %s AND status IN ('active', 'pending')
                    """,
                    (tenant_id,),
                )
                end_date = now + timedelta(days=PERIOD_DAYS[plan["interval"]])
                cur.execute(
                    """
                    INSERT INTO subscriptions (id, tenant_id, plan_id, status, start_date, end_date, auto_renew)
                    VALUES (gen_random_uuid(), %s, %s, 'active', %s, %s, true)
                    RETURNING id, tenant_id, plan_id, status, start_date, end_date, auto_renew
                    """,
                    (tenant_id, plan["id"], now, end_date),
                )
                sub = cur.fetchone()
                if paid:
                    cur.execute(
                        """
                        INSERT INTO billing_history
                          (id, tenant_id, subscription_id, stripe_payment_intent_id, amount, currency,
                           payment_method, status, paid_at, description)
                        VALUES
                          (gen_random_uuid(), %s, %s, %s, %s, %s, 'stripe', 'paid', %s, %s)
                        """,
                        (
                            tenant_id,
                            sub["id"],
                            data.payment_intent_id,
                            plan["price"],
                            plan["currency"],
                            now,
                            f"{plan['name']} subscription",
                        ),
                    )
                cur.execute(
                    "UPDATE tenants SET status = 'active', updated_at = now() WHERE id = %s",
                    (tenant_id,),
                )

    json_log("info", "subscription.created", tenant_id=tenant_id, plan_id=plan["id"], subscription_id=sub["id"])
    subject, html, text = subscription_confirmation_email(
        plan_name=plan["name"], amount=plan["price"], currency=plan["currency"], end_date=end_date
    )
    notification_service.send("email", NotificationMessage(to=tenant["email"], message=text, subject=subject, html=html))
    return {"subscription": sub, "plan": plan}


@router.post("/{subscription_id}/cancel")
def cancel_subscription(subscription_id: str, user=Depends(require_roles("owner", "administrator"))):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, tenant_id, status, stripe_subscription_id FROM subscriptions WHERE id = %s",
                (subscription_id,),
            )
            sub = cur.fetchone()
            if not sub or (not is_admin(user) and str(sub["tenant_id"]) != user["tenant_id"]):
                raise HTTPException(status_code=404, detail="subscription not found")
            if sub["status"] in {"cancelled", "expired"}:
                raise HTTPException(status_code=409, detail=f"subscription is already {sub['status']}")
            if sub["stripe_subscription_id"] and stripe_gateway.configured():
                stripe_gateway.cancel_subscription(sub["stripe_subscription_id"])
            cur.execute(
                """
                UPDATE subscriptions
                SET status = 'cancelled', auto_renew = false, updated_at = now()
                WHERE id = %s
                """,
                (subscription_id,),
            )
    json_log("info", "subscription.cancelled", subscription_id=subscription_id, by=user["user_id"])
    return {"ok": True}


@router.get("/billing")
def billing_history(tenant_id: Optional[str] = None, limit: int = 100, user=Depends(get_current_user)):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    if is_admin(user):
        target = tenant_id
    elif user["role"] == "owner":
        target = user["tenant_id"]
    else:
        raise HTTPException(status_code=403, detail="insufficient permissions")
    where, params = ("b.tenant_id = %s", [target]) if target else ("true", [])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT b.id, b.tenant_id, b.subscription_id, b.stripe_invoice_id, b.amount, b.currency,
                       b.payment_method, b.status, b.paid_at, b.description, b.created_at
                FROM billing_history b
                WHERE {where}
                ORDER BY b.created_at DESC
                LIMIT %s
                """,
                params + [limit],
            )
            return {"billing": cur.fetchall()}


class BillingStatusIn(BaseModel):
    status: BillingStatus


@router.put("/billing/{billing_id}/status")
def set_billing_status(billing_id: str, data: BillingStatusIn, admin=Depends(require_admin)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE billing_history
                SET status = %s,
                    paid_at = CASE WHEN %s = 'paid' THEN COALESCE(paid_at, now()) ELSE paid_at END
                WHERE id = %s
                """,
                (data.status, data.status, billing_id),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="billing record not found")
    json_log("info", "billing.status_set", billing_id=billing_id, status=data.status, by=admin["user_id"])
    return {"ok": True}
