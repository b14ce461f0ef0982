from decimal import Decimal

import pytest

from possaas.app.billing_events import (
    handle_stripe_event,
    map_subscription_status,
    minor_to_amount,
    record_invoice,
)
from possaas.tests.fakes import FakeCursor

INVOICE = {
    "id": "in_123",
    "customer": "cus_1",
    "subscription": "sub_1",
    "currency": "usd",
    "amount_paid": 9900,
    "amount_due": 9900,
    "number": "A-0001",
    "status_transitions": {"paid_at": 1714550400},
}


def _event(event_type, obj):
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


def _cursor(inserted=True, tenant_update=1):
    return FakeCursor(
        [
            ("from subscriptions where stripe_subscription_id", [{"id": "local-sub", "tenant_id": "t-1"}]),
            ("insert into billing_history", [{"id": "b-1"}] if inserted else []),
            ("update tenants set status = 'active'", tenant_update),
        ]
    )


@pytest.mark.parametrize(
    "stripe_status,expected",
    [
        ("active", "active"),
        ("trialing", "pending"),
        ("canceled", "cancelled"),
        ("incomplete_expired", "cancelled"),
        ("past_due", "expired"),
        ("unpaid", "expired"),
        ("incomplete", "pending"),
        (None, "pending"),
    ],
)
def test_subscription_status_mapping(stripe_status, expected):
    assert map_subscription_status(stripe_status) == expected


def test_minor_units_respect_zero_decimal_currencies():
    assert minor_to_amount(9900, "usd") == Decimal("99.00")
    assert minor_to_amount(5000, "JPY") == Decimal("5000.00")
    assert minor_to_amount(None, "usd") == Decimal("0.00")


def test_paid_invoice_upserts_once_and_activates_tenant():
    cur = _cursor()
    assert handle_stripe_event(cur, _event("invoice.payment_succeeded", INVOICE)) == "processed"

    text, params = cur.statements("insert into billing_history")[0]
    assert "on conflict (stripe_invoice_id) do update" in text
    assert "where billing_history.status = 'pending' and excluded.status <> 'pending'" in text
    assert params[:4] == ("t-1", "local-sub", "in_123", Decimal("99.00"))
    assert params[5] == "paid"
    assert params[6] is not None
    assert cur.statements("update tenants set status = 'active'")


def test_replayed_invoice_changes_nothing():
    cur = _cursor(inserted=False)
    assert record_invoice(cur, INVOICE, "paid") is False
    assert not cur.statements("update tenants")


def test_failed_invoice_uses_amount_due_and_leaves_tenant_alone():
    cur = _cursor()
    invoice = dict(INVOICE, amount_paid=0, amount_due=4500)
    assert record_invoice(cur, invoice, "failed") is True
    params = cur.statements("insert into billing_history")[0][1]
    assert params[3] == Decimal("45.00")
    assert params[5] == "failed"
    assert params[6] is None
    assert not cur.statements("update tenants")


def test_invoice_for_unknown_customer_writes_nothing():
    cur = FakeCursor(
        [
            ("from subscriptions where stripe_subscription_id", []),
            ("from tenants where stripe_customer_id", []),
        ]
    )
    invoice = dict(INVOICE, id="in_orphan", customer="cus_unknown", subscription="sub_unknown", amount_paid=500)
    assert handle_stripe_event(cur, _event("invoice.payment_succeeded", invoice)) == "processed"
    assert cur.statements("insert into billing_history") == []
    assert cur.statements("update tenants") == []


def test_invoice_matched_by_customer_only_keeps_tenant():
    cur = FakeCursor(
        [
            ("from subscriptions where stripe_subscription_id", []),
            ("from tenants where stripe_customer_id", [{"id": "t-7"}]),
            ("insert into billing_history", [{"id": "b-9"}]),
            ("update tenants set status = 'active'", 1),
        ]
    )
    assert record_invoice(cur, INVOICE, "paid") is True
    params = cur.statements("insert into billing_history")[0][1]
    assert params[:2] == ("t-7", None)


def test_trialing_subscription_update_stays_pending():
    cur = FakeCursor([("update subscriptions set status = %s", 1)])
    handle_stripe_event(cur, _event("customer.subscription.updated", {"id": "sub_1", "status": "trialing"}))
    assert cur.executed[0][1][0] == "pending"


def test_refund_marks_paid_row_refunded():
    cur = FakeCursor([("update billing_history set status = 'refunded'", 1)])
    assert handle_stripe_event(cur, _event("charge.refunded", {"id": "ch_1", "invoice": "in_123"})) == "processed"
    assert cur.executed[0][1] == ("in_123",)


def test_subscription_deleted_is_cancelled():
    cur = FakeCursor([("update subscriptions set status = %s", 1)])
    handle_stripe_event(cur, _event("customer.subscription.deleted", {"id": "sub_1", "status": "canceled"}))
    params = cur.executed[0][1]
    assert params[0] == "cancelled"
    assert params[2] is False
    assert params[3] == "sub_1"


def test_subscription_created_outside_app_is_adopted_by_price():
    cur = FakeCursor(
        [
            ("update subscriptions set status = %s", 0),
            ("from tenants where stripe_customer_id", [{"id": "t-1"}]),
            ("from subscription_plans where stripe_price_id", [{"id": "plan-1"}]),
            ("insert into subscriptions", 1),
        ]
    )
    sub = {
        "id": "sub_9",
        "customer": "cus_1",
        "status": "active",
        "current_period_end": 1717228800,
        "items": {"data": [{"price": {"id": "price_basic"}}]},
    }
    handle_stripe_event(cur, _event("customer.subscription.created", sub))
    text, params = cur.statements("insert into subscriptions")[0]
    assert "on conflict (stripe_subscription_id) do nothing" in text
    assert params[:4] == ("t-1", "plan-1", "sub_9", "active")


def test_unknown_events_are_ignored_without_queries():
    cur = FakeCursor([])
    assert handle_stripe_event(cur, _event("customer.created", {"id": "cus_1"})) == "ignored"
    assert cur.executed == []
