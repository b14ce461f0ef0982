"""
Outbound notifications over email (SMTP), WhatsApp Cloud API and the Telegram Bot API.

Providers that are not configured log the message they would have sent and report
success, so local/dev flows (registration, reminders) work without credentials.
"""
import json
import smtplib
import urllib.error
import urllib.request
from dataclasses import dataclass, field, replace
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from .config import settings
from .email_templates import payment_reminder_email, welcome_email
from .logs import json_log

HTTP_TIMEOUT_SECONDS = 15


@dataclass
class NotificationMessage:
    to: str
    message: str
    subject: Optional[str] = None
    html: Optional[str] = None
    priority: str = "medium"
    data: Dict[str, Any] = field(default_factory=dict)


def _http_post_json(url: str, payload: dict, headers: Optional[dict] = None) -> dict:
    body = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(url, data=body, method="POST")
    req.add_header("Content-Type", "application/json")
    for k, v in (headers or {}).items():
        req.add_header(k, v)
    try:
        with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT_SECONDS) as resp:
            return json.loads(resp.read().decode("utf-8") or "{}")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else str(e)
        raise RuntimeError(f"HTTP {getattr(e, 'code', '?')}: {detail}") from e


class EmailProvider:
    channel = "email"

    def is_configured(self) -> bool:
        return bool(settings.smtp_host)

    def send(self, msg: NotificationMessage) -> bool:
        if not self.is_configured():
            json_log("info", "notify.email.fallback", to=msg.to, subject=msg.subject, message=msg.message)
            return True
        em = EmailMessage()
        em["From"] = settings.email_from
        em["To"] = msg.to
        em["Subject"] = msg.subject or "Notification"
        em.set_content(msg.message)
        if msg.html:
            em.add_alternative(msg.html, subtype="html")
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=HTTP_TIMEOUT_SECONDS) as smtp:
            if settings.smtp_starttls:
                smtp.starttls()
            if settings.smtp_user:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(em)
        json_log("info", "notify.email.sent", to=msg.to, subject=em["Subject"])
        return True


class WhatsAppProvider:
    channel = "whatsapp"

    def __init__(self, access_token: Optional[str] = None, phone_number_id: Optional[str] = None):
        self.access_token = access_token if access_token is not None else settings.whatsapp_access_token
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.whatsapp_phone_number_id

    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _messages_url(self) -> str:
        return f"https://graph.facebook.com/{settings.whatsapp_api_version}/{self.phone_number_id}/messages"

    def _post(self, payload: dict) -> str:
        res = _http_post_json(self._messages_url(), payload, {"Authorization": f"Bearer {self.access_token}"})
        return ((res.get("messages") or [{}])[0]).get("id") or ""

    def send(self, msg: NotificationMessage) -> bool:
        if not self.is_configured():
            json_log("info", "notify.whatsapp.fallback", to=msg.to, message=msg.message)
            return True
        message_id = self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": msg.to,
                "type": "text",
                "text": {"body": msg.message},
            }
        )
        json_log("info", "notify.whatsapp.sent", to=msg.to, message_id=message_id)
        return True

    def send_template(self, to: str, template_name: str, components: List[dict], language: str = "id") -> bool:
        if not self.is_configured():
            json_log("info", "notify.whatsapp.template_fallback", to=to, template=template_name, components=components)
            return True
        message_id = self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "template",
                "template": {"name": template_name, "language": {"code": language}, "components": components},
            }
        )
        json_log("info", "notify.whatsapp.template_sent", to=to, template=template_name, message_id=message_id)
        return True


class TelegramProvider:
    channel = "telegram"

    def __init__(self, bot_token: Optional[str] = None):
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token

    def is_configured(self) -> bool:
        return bool(self.bot_token)

    def _send_message(self, payload: dict) -> bool:
        res = _http_post_json(f"https://api.telegram.org/bot{self.bot_token}/sendMessage", payload)
        if not res.get("ok"):
            json_log("warning", "notify.telegram.rejected", chat_id=payload.get("chat_id"), response=res)
            return False
        json_log("info", "notify.telegram.sent", chat_id=payload.get("chat_id"), message_id=(res.get("result") or {}).get("message_id"))
        return True

    def send(self, msg: NotificationMessage) -> bool:
        if not self.is_configured():
            json_log("info", "notify.telegram.fallback", to=msg.to, message=msg.message)
            return True
        return self._send_message(
            {"chat_id": msg.to, "text": msg.message, "parse_mode": "HTML", "disable_web_page_preview": True}
        )

    def send_with_keyboard(self, to: str, text: str, keyboard: List[List[dict]]) -> bool:
        if not self.is_configured():
            json_log("info", "notify.telegram.keyboard_fallback", to=to, message=text, keyboard=keyboard)
            return True
        return self._send_message(
            {"chat_id": to, "text": text, "parse_mode": "HTML", "reply_markup": {"inline_keyboard": keyboard}}
        )


class NotificationService:
    def __init__(self, providers: Optional[Dict[str, Any]] = None):
        self.providers = providers or {
            "email": EmailProvider(),
            "whatsapp": WhatsAppProvider(),
            "telegram": TelegramProvider(),
        }

    def send(self, channel: str, msg: NotificationMessage) -> bool:
        if channel == "all":
            # Every channel is attempted; success if any one delivers.
            results = [self.send(name, msg) for name in self.providers]
            return any(results)
        provider = self.providers.get(channel)
        if provider is None:
            json_log("error", "notify.unknown_channel", channel=channel)
            return False
        try:
            return bool(provider.send(msg))
        except (OSError, RuntimeError, smtplib.SMTPException) as exc:
            json_log("error", "notify.send_failed", channel=channel, to=msg.to, error=str(exc))
            return False

    def provider_status(self) -> Dict[str, bool]:
        return {name: bool(p.is_configured()) for name, p in self.providers.items()}

    def fan_out(self, contact: dict, msg: NotificationMessage) -> Dict[str, bool]:
        sent = {}
        if contact.get("email"):
            sent["email"] = self.send("email", replace(msg, to=contact["email"]))
        if contact.get("phone"):
            sent["whatsapp"] = self.send("whatsapp", replace(msg, to=contact["phone"]))
        if contact.get("telegram_chat_id"):
            sent["telegram"] = self.send("telegram", replace(msg, to=str(contact["telegram_chat_id"])))
        return sent

    def send_welcome(self, contact: dict, *, name: str, business_name: str) -> Dict[str, bool]:
        subject, html, text = welcome_email(name=name, business_name=business_name)
        return self.fan_out(contact, NotificationMessage(to="", message=text, subject=subject, html=html))

    def send_payment_reminder(self, contact: dict, *, plan_name: str, amount, currency: str, due_date) -> Dict[str, bool]:
        subject, html, text = payment_reminder_email(plan_name=plan_name, amount=amount, currency=currency, due_date=due_date)
        return self.fan_out(
            contact, NotificationMessage(to="", message=text, subject=subject, html=html, priority="high")
        )

    def send_system_alert(self, contact: dict, *, title: str, body: str) -> Dict[str, bool]:
        text = f"{title}\n\n{body}"
        return self.fan_out(contact, NotificationMessage(to="", message=text, subject=title, priority="high"))


notification_service = NotificationService()
