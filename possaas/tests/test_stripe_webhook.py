import hashlib
import hmac
import json
import time

import pytest
import stripe
from fastapi import HTTPException

from possaas.app.routers import webhooks
from possaas.app.routers.webhooks import parse_stripe_event, process_stripe_event
from possaas.tests.fakes import FakeConn, FakeCursor

SECRET = "whsec_test_secret"
PAYLOAD = json.dumps({"id": "evt_1", "type": "invoice.created", "data": {"object": {"id": "in_1"}}}).encode("utf-8")


def _sign(payload: bytes, secret: str = SECRET, ts: int = None) -> str:
    ts = ts or int(time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


@pytest.fixture
def stripe_settings(monkeypatch):
    def apply(secret="", env="production", allow_unverified=False):
        monkeypatch.setattr(webhooks.settings, "stripe_webhook_secret", secret)
        monkeypatch.setattr(webhooks.settings, "env", env)
        monkeypatch.setattr(webhooks.settings, "stripe_allow_unverified", allow_unverified)

    return apply


def test_valid_signature_is_accepted(stripe_settings):
    stripe_settings(secret=SECRET)
    event = parse_stripe_event(PAYLOAD, _sign(PAYLOAD))
    assert isinstance(event, stripe.Event)
    assert event["id"] == "evt_1"
    assert event["data"]["object"].get("id") == "in_1"


def test_bad_signature_is_rejected(stripe_settings):
    stripe_settings(secret=SECRET)
    with pytest.raises(HTTPException) as exc_info:
        parse_stripe_event(PAYLOAD, _sign(PAYLOAD, secret="whsec_other"))
    assert exc_info.value.status_code == 400
    assert str(exc_info.value.detail).startswith("Webhook Error:")


def test_missing_signature_header_is_rejected(stripe_settings):
    stripe_settings(secret=SECRET)
    with pytest.raises(HTTPException) as exc_info:
        parse_stripe_event(PAYLOAD, None)
    assert exc_info.value.status_code == 400


def test_unsigned_events_rejected_outside_dev(stripe_settings):
    stripe_settings(secret="", env="production", allow_unverified=True)
    with pytest.raises(HTTPException) as exc_info:
        parse_stripe_event(PAYLOAD, None)
    assert exc_info.value.status_code == 400


def test_unsigned_events_need_explicit_dev_opt_in(stripe_settings):
    stripe_settings(secret="", env="local", allow_unverified=False)
    with pytest.raises(HTTPException):
        parse_stripe_event(PAYLOAD, None)

    stripe_settings(secret="", env="local", allow_unverified=True)
    assert parse_stripe_event(PAYLOAD, None)["type"] == "invoice.created"


def test_duplicate_event_is_acknowledged_without_reprocessing(monkeypatch):
    cur = FakeCursor([("insert into webhook_events", 0)])
    monkeypatch.setattr(webhooks, "get_conn", lambda: FakeConn(cur))
    called = []
    monkeypatch.setattr(webhooks, "handle_stripe_event", lambda c, e: called.append(e) or "processed")

    res = process_stripe_event(json.loads(PAYLOAD))

    assert res == {"received": True, "duplicate": True}
    assert called == []
    assert "on conflict (provider, event_id) do nothing" in cur.executed[0][0]


def test_new_event_is_recorded_then_handled(monkeypatch):
    cur = FakeCursor([("insert into webhook_events", 1)])
    monkeypatch.setattr(webhooks, "get_conn", lambda: FakeConn(cur))
    called = []
    monkeypatch.setattr(webhooks, "handle_stripe_event", lambda c, e: called.append(e["id"]) or "ignored")

    assert process_stripe_event(json.loads(PAYLOAD)) == {"received": True}
    assert called == ["evt_1"]
    assert cur.executed[0][1][:3] == ("stripe", "evt_1", "invoice.created")
