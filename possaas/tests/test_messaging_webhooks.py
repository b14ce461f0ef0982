import hashlib
import hmac

import pytest
from fastapi import HTTPException

from possaas.app.routers import telegram, whatsapp
from possaas.app.routers.whatsapp import handle_whatsapp_payload, verify_signature
from possaas.tests.fakes import FakeConn, FakeCursor


class _Provider:
    def __init__(self, configured=True):
        self.configured = configured
        self.sent = []

    def is_configured(self):
        return self.configured

    def send(self, msg):
        self.sent.append(msg)
        return True


def _payload(*messages, statuses=()):
    return {
        "object": "whatsapp_business_account",
        "entry": [{"changes": [{"field": "messages", "value": {"messages": list(messages), "statuses": list(statuses)}}]}],
    }


def test_whatsapp_signature():
    body = b'{"object":"whatsapp_business_account"}'
    good = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
    assert verify_signature(body, good, "app-secret") is True
    assert verify_signature(body + b" ", good, "app-secret") is False
    assert verify_signature(body, None, "app-secret") is False
    assert verify_signature(body, good.replace("sha256=", "sha1="), "app-secret") is False


def test_whatsapp_text_is_recorded_and_echoed(monkeypatch):
    cur = FakeCursor([("insert into webhook_events", 1)])
    monkeypatch.setattr(whatsapp, "get_conn", lambda: FakeConn(cur))
    provider = _Provider()

    res = handle_whatsapp_payload(
        _payload({"id": "wamid.1", "from": "628111", "type": "text", "text": {"body": " hi "}},
                 statuses=[{"id": "wamid.0", "status": "delivered"}]),
        provider=provider,
    )

    assert res == {"ok": True, "handled": 1}
    assert cur.executed[0][1][:3] == ("whatsapp", "wamid.1", "text")
    assert provider.sent[0].to == "628111"
    assert provider.sent[0].message == "Received: hi"


def test_whatsapp_redelivery_is_ignored(monkeypatch):
    cur = FakeCursor([("insert into webhook_events", 0)])
    monkeypatch.setattr(whatsapp, "get_conn", lambda: FakeConn(cur))
    provider = _Provider()

    res = handle_whatsapp_payload(_payload({"id": "wamid.1", "from": "628111", "type": "text", "text": {"body": "hi"}}), provider=provider)

    assert res["handled"] == 0
    assert provider.sent == []


def test_whatsapp_without_credentials_does_not_reply(monkeypatch):
    cur = FakeCursor([("insert into webhook_events", 1)])
    monkeypatch.setattr(whatsapp, "get_conn", lambda: FakeConn(cur))
    provider = _Provider(configured=False)
    res = handle_whatsapp_payload(_payload({"id": "wamid.2", "from": "1", "type": "image"}), provider=provider)
    assert res["handled"] == 1
    assert provider.sent == []


def test_telegram_replies():
    greeting = telegram.reply_for("/start", 42, "Ana")
    assert "Hello Ana!" in greeting
    assert "<code>42</code>" in greeting
    assert telegram.reply_for("/start@possaas_bot", 42, None).startswith("Hello there!")
    assert telegram.reply_for("<b>hi</b>", 42, "Ana") == "You said: &lt;b&gt;hi&lt;/b&gt;"


def test_telegram_disabled_without_bot_token(monkeypatch):
    monkeypatch.setattr(telegram.settings, "telegram_bot_token", "")
    with pytest.raises(HTTPException) as exc_info:
        telegram.telegram_webhook({"message": {"chat": {"id": 1}, "text": "hi"}}, None)
    assert exc_info.value.status_code == 404


def test_telegram_rejects_wrong_secret(monkeypatch):
    monkeypatch.setattr(telegram.settings, "telegram_bot_token", "bot")
    monkeypatch.setattr(telegram.settings, "telegram_webhook_secret", "s3cret")
    with pytest.raises(HTTPException) as exc_info:
        telegram.telegram_webhook({"message": {"chat": {"id": 1}, "text": "hi"}}, "nope")
    assert exc_info.value.status_code == 401


def test_telegram_message_gets_reply(monkeypatch):
    monkeypatch.setattr(telegram.settings, "telegram_bot_token", "bot")
    monkeypatch.setattr(telegram.settings, "telegram_webhook_secret", "")
    sent = []
    monkeypatch.setattr(telegram.notification_service, "send", lambda channel, msg: sent.append((channel, msg)) or True)

    res = telegram.telegram_webhook({"update_id": 7, "message": {"chat": {"id": 99}, "from": {"first_name": "Bo"}, "text": "/start"}}, None)

    assert res == {"ok": True, "replied": True}
    channel, msg = sent[0]
    assert channel == "telegram"
    assert msg.to == "99"
    assert "Hello Bo!" in msg.message


def test_telegram_ignores_updates_without_text(monkeypatch):
    monkeypatch.setattr(telegram.settings, "telegram_bot_token", "bot")
    monkeypatch.setattr(telegram.settings, "telegram_webhook_secret", "")
    assert telegram.telegram_webhook({"callback_query": {}}, None) == {"ok": True}
