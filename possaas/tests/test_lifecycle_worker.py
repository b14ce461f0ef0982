from datetime import datetime, timedelta, timezone
from decimal import Decimal

from possaas.tests.fakes import FakeCursor
from possaas.workers import subscription_lifecycle as worker

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_expired_subscriptions_expire_their_tenants_once():
    cur = FakeCursor(
        [
            ("update subscriptions set status = 'expired'", [{"tenant_id": "t-1"}, {"tenant_id": "t-1"}, {"tenant_id": "t-2"}]),
            ("update tenants set status = 'expired'", 1),
        ]
    )
    assert worker.expire_subscriptions(cur, NOW) == 2
    tenant_updates = cur.statements("update tenants")
    assert [p for _t, p in tenant_updates] == [("t-1",), ("t-2",)]
    assert "not exists" in tenant_updates[0][0]


def test_expire_trials_reports_rowcount():
    cur = FakeCursor([("where status = 'trial'", 3)])
    assert worker.expire_trials(cur, NOW) == 3
    assert cur.executed[0][1] == (NOW,)


def test_reminder_marks_subscription_when_delivered(monkeypatch):
    due = {
        "id": "s-1",
        "end_date": NOW + timedelta(days=2),
        "plan_name": "Business",
        "price": Decimal("299000"),
        "currency": "IDR",
        "email": "owner@x.io",
        "phone": None,
        "telegram_chat_id": None,
    }
    cur = FakeCursor(
        [
            ("from subscriptions s join subscription_plans p", [due]),
            ("update subscriptions set reminder_sent_at", 1),
        ]
    )
    calls = []

    def fake_reminder(contact, **kw):
        calls.append((contact["email"], kw))
        return {"email": True}

    monkeypatch.setattr(worker.notification_service, "send_payment_reminder", fake_reminder)

    assert worker.send_reminders(cur, NOW, 3) == 1
    assert calls[0][0] == "owner@x.io"
    assert calls[0][1]["plan_name"] == "Business"
    assert cur.statements("reminder_sent_at = %s")[0][1] == (NOW, "s-1")


def test_failed_reminder_is_retried_next_pass(monkeypatch):
    due = {"id": "s-1", "end_date": NOW, "plan_name": "P", "price": 1, "currency": "USD", "email": "o@x.io"}
    cur = FakeCursor([("from subscriptions s join subscription_plans p", [due])])
    monkeypatch.setattr(worker.notification_service, "send_payment_reminder", lambda contact, **kw: {"email": False})
    assert worker.send_reminders(cur, NOW, 3) == 0
    assert cur.statements("reminder_sent_at = %s") == []
