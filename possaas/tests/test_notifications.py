import pytest

from possaas.app import notifications
from possaas.app.notifications import (
    EmailProvider,
    NotificationMessage,
    NotificationService,
    TelegramProvider,
    WhatsAppProvider,
)


class _Provider:
    def __init__(self, result=True, exc=None, configured=True):
        self.result = result
        self.exc = exc
        self.configured = configured
        self.sent = []

    def is_configured(self):
        return self.configured

    def send(self, msg):
        self.sent.append(msg)
        if self.exc:
            raise self.exc
        return self.result


def test_unconfigured_providers_log_and_report_success(monkeypatch):
    monkeypatch.setattr(notifications.settings, "smtp_host", "")
    msg = NotificationMessage(to="x", message="hello")
    assert EmailProvider().send(msg) is True
    assert WhatsAppProvider(access_token="", phone_number_id="").send(msg) is True
    assert TelegramProvider(bot_token="").send(msg) is True


def test_all_channel_succeeds_when_any_provider_delivers():
    ok, broken = _Provider(result=True), _Provider(exc=RuntimeError("HTTP 500"))
    svc = NotificationService({"email": broken, "telegram": ok})
    assert svc.send("all", NotificationMessage(to="1", message="hi")) is True
    assert len(ok.sent) == 1 and len(broken.sent) == 1


def test_provider_errors_become_false():
    svc = NotificationService({"whatsapp": _Provider(exc=OSError("timeout"))})
    assert svc.send("whatsapp", NotificationMessage(to="1", message="hi")) is False


def test_unknown_channel_is_false():
    assert NotificationService({}).send("sms", NotificationMessage(to="1", message="hi")) is False


def test_fan_out_targets_each_known_contact_channel():
    email, wa, tg = _Provider(), _Provider(), _Provider()
    svc = NotificationService({"email": email, "whatsapp": wa, "telegram": tg})
    sent = svc.fan_out({"email": "o@x.io", "phone": None, "telegram_chat_id": 42}, NotificationMessage(to="", message="m"))
    assert sent == {"email": True, "telegram": True}
    assert email.sent[0].to == "o@x.io"
    assert tg.sent[0].to == "42"
    assert wa.sent == []


def test_provider_status_reports_configuration():
    svc = NotificationService({"email": _Provider(configured=False), "telegram": _Provider()})
    assert svc.provider_status() == {"email": False, "telegram": True}


def test_whatsapp_posts_text_payload(monkeypatch):
    calls = []

    def fake_post(url, payload, headers=None):
        calls.append((url, payload, headers))
        return {"messages": [{"id": "wamid.1"}]}

    monkeypatch.setattr(notifications, "_http_post_json", fake_post)
    provider = WhatsAppProvider(access_token="tok", phone_number_id="123")
    assert provider.send(NotificationMessage(to="628111", message="Hi")) is True
    url, payload, headers = calls[0]
    assert url.endswith("/123/messages")
    assert payload["text"] == {"body": "Hi"}
    assert headers["Authorization"] == "Bearer tok"


@pytest.mark.parametrize("ok,expected", [(True, True), (False, False)])
def test_telegram_reports_api_result(monkeypatch, ok, expected):
    monkeypatch.setattr(notifications, "_http_post_json", lambda url, payload, headers=None: {"ok": ok, "result": {}})
    assert TelegramProvider(bot_token="t").send(NotificationMessage(to="1", message="x")) is expected
