"""
Stripe event ingestion.

Events arrive already signature-checked (see routers/webhooks.py). Every write here
is keyed on a Stripe identifier so a replayed event never duplicates rows.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from .logs import json_log
from .pricing import q_money

# Currencies Stripe bills in whole units.
ZERO_DECIMAL_CURRENCIES = {"BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}

_SUBSCRIPTION_STATUS = {
    "active": "active",
    "canceled": "cancelled",
    "incomplete_expired": "cancelled",
    "past_due": "expired",
    "unpaid": "expired",
}

INVOICE_EVENTS = {
    "invoice.payment_succeeded": "paid",
    "invoice.payment_failed": "failed",
    "invoice.created": "pending",
}


def map_subscription_status(stripe_status: Optional[str]) -> str:
    return _SUBSCRIPTION_STATUS.get((stripe_status or "").strip().lower(), "pending")


def minor_to_amount(value: Any, currency: Optional[str]) -> Decimal:
    raw = Decimal(str(value or 0))
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        return q_money(raw)
    return q_money(raw / Decimal(100))


def _ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _resolve_tenant(cur, stripe_subscription_id: Optional[str], stripe_customer_id: Optional[str]):
    """Returns (tenant_id, subscription_id); either may be None."""
    if stripe_subscription_id:
        cur.execute(
            "SELECT id, tenant_id FROM subscriptions WHERE stripe_subscription_id = %s",
            (stripe_subscription_id,),
        )
        row = cur.fetchone()
        if row:
            return row["tenant_id"], row["id"]
    if stripe_customer_id:
        cur.execute("SELECT id FROM tenants WHERE stripe_customer_id = %s", (stripe_customer_id,))
        row = cur.fetchone()
        if row:
            return row["id"], None
    return None, None


def record_invoice(cur, invoice: dict, status: str) -> bool:
    """
    Upsert the billing row for a Stripe invoice.

    Returns True when a row was inserted or a pending row settled. False on a replay,
    or when the invoice belongs to no known subscription or customer (nothing is written).
    """
    invoice_id = invoice.get("id")
    if not invoice_id:
        raise ValueError("invoice has no id")
    currency = (invoice.get("currency") or "").upper() or None
    amount_field = "amount_paid" if status == "paid" else "amount_due"
    amount = minor_to_amount(invoice.get(amount_field), currency)
    paid_at = _ts(((invoice.get("status_transitions") or {}).get("paid_at"))) if status == "paid" else None
    if status == "paid" and paid_at is None:
        paid_at = datetime.now(timezone.utc)

    tenant_id, subscription_id = _resolve_tenant(cur, invoice.get("subscription"), invoice.get("customer"))
    if tenant_id is None:
        json_log("warning", "stripe.invoice.unmatched", invoice_id=invoice_id, customer=invoice.get("customer"))
        return False

    cur.execute(
        """
        INSERT INTO billing_history
          (id, tenant_id, subscription_id, stripe_invoice_id, amount, currency, payment_method, status, paid_at, description)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, COALESCE(%s, 'IDR'), 'stripe', %s, %s, %s)
        ON CONFLICT (stripe_invoice_id) DO UPDATE
        SET status = EXCLUDED.status,
            amount = EXCLUDED.amount,
            paid_at = EXCLUDED.paid_at
        WHERE billing_history.status = 'pending' AND EXCLUDED.status <> 'pending'
        RETURNING id
        """,
        (
            tenant_id,
            subscription_id,
            invoice_id,
            amount,
            currency,
            status,
            paid_at,
            invoice.get("description") or f"Stripe invoice {invoice.get('number') or invoice_id}",
        ),
    )
    changed = cur.fetchone() is not None

    if changed and status == "paid":
        cur.execute(
            """
            UPDATE tenants
            SET status = 'active', updated_at = now()
            WHERE id = %s AND status IN ('trial', 'expired')
            """,
            (tenant_id,),
        )
    return changed


def record_refund(cur, charge: dict) -> bool:
    invoice_id = charge.get("invoice")
    if not invoice_id:
        return False
    cur.execute(
        """
        UPDATE billing_history
        SET status = 'refunded'
        WHERE stripe_invoice_id = %s AND status = 'paid'
        """,
        (invoice_id,),
    )
    return cur.rowcount > 0


def _plan_for_price(cur, sub: dict):
    items = ((sub.get("items") or {}).get("data")) or []
    price_id = ((items[0].get("price") or {}).get("id")) if items else None
    if not price_id:
        return None
    cur.execute("SELECT id FROM subscription_plans WHERE stripe_price_id = %s", (price_id,))
    row = cur.fetchone()
    return row["id"] if row else None


def sync_subscription(cur, sub: dict, event_type: str) -> bool:
    stripe_id = sub.get("id")
    if not stripe_id:
        raise ValueError("subscription has no id")

    if event_type == "customer.subscription.deleted":
        status = "cancelled"
    elif event_type == "customer.subscription.created":
        status = "active" if (sub.get("status") or "") == "active" else "pending"
    else:
        status = map_subscription_status(sub.get("status"))

    end_date = _ts(sub.get("current_period_end"))
    auto_renew = not bool(sub.get("cancel_at_period_end")) and status != "cancelled"

    cur.execute(
        """
        UPDATE subscriptions
        SET status = %s,
            end_date = COALESCE(%s, end_date),
            auto_renew = %s,
            updated_at = now()
        WHERE stripe_subscription_id = %s
        """,
        (status, end_date, auto_renew, stripe_id),
    )
    if cur.rowcount > 0:
        return True

    # Subscription started outside the app (dashboard, checkout link): adopt it when we can place it.
    tenant_id, _ = _resolve_tenant(cur, None, sub.get("customer"))
    plan_id = _plan_for_price(cur, sub)
    if tenant_id is None or plan_id is None:
        json_log("warning", "stripe.subscription.unmatched", subscription_id=stripe_id, customer=sub.get("customer"))
        return False
    cur.execute(
        """
        INSERT INTO subscriptions (id, tenant_id, plan_id, stripe_subscription_id, status, start_date, end_date, auto_renew)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, COALESCE(%s, now()), %s, %s)
        ON CONFLICT (stripe_subscription_id) DO NOTHING
        """,
        (tenant_id, plan_id, stripe_id, status, _ts(sub.get("start_date")), end_date, auto_renew),
    )
    return cur.rowcount > 0


def handle_stripe_event(cur, event: dict) -> str:
    """
    Apply one Stripe event. Returns "processed" or "ignored" (unknown event types).
    """
    event_type = event.get("type") or ""
    obj = ((event.get("data") or {}).get("object")) or {}

    if event_type in INVOICE_EVENTS:
        changed = record_invoice(cur, obj, INVOICE_EVENTS[event_type])
        json_log("info", "stripe.invoice", event_type=event_type, invoice_id=obj.get("id"), changed=changed)
        return "processed"
    if event_type == "charge.refunded":
        changed = record_refund(cur, obj)
        json_log("info", "stripe.refund", charge_id=obj.get("id"), invoice_id=obj.get("invoice"), changed=changed)
        return "processed"
    if event_type.startswith("customer.subscription.") and event_type.rsplit(".", 1)[-1] in {"created", "updated", "deleted"}:
        changed = sync_subscription(cur, obj, event_type)
        json_log("info", "stripe.subscription", event_type=event_type, subscription_id=obj.get("id"), changed=changed)
        return "processed"

    json_log("info", "stripe.event.ignored", event_type=event_type, event_id=event.get("id"))
    return "ignored"
