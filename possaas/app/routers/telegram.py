import hmac
from html import escape
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException

from ..config import settings
from ..logs import json_log
from ..notifications import NotificationMessage, notification_service

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def reply_for(text: str, chat_id: Any, first_name: Optional[str]) -> str:
    if text.split(" ", 1)[0].split("@", 1)[0] == "/start":
        who = escape(first_name or "there")
        return (
            f"Hello {who}! This chat is ready to receive POS notifications.\n"
            f"Your chat id is <code>{chat_id}</code>. Add it to your profile to link this chat."
        )
    return f"You said: {escape(text)}"


@router.post("/telegram")
def telegram_webhook(
    update: dict[str, Any],
    x_telegram_bot_api_secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    if not settings.telegram_bot_token:
        raise HTTPException(status_code=404, detail="telegram integration not configured")
    expected = settings.telegram_webhook_secret
    if expected and not hmac.compare_digest((x_telegram_bot_api_secret_token or "").strip(), expected):
        raise HTTPException(status_code=401, detail="invalid telegram secret")

    msg = update.get("message") or update.get("edited_message") or {}
    chat_id = (msg.get("chat") or {}).get("id")
    text = (msg.get("text") or "").strip()
    if chat_id is None or not text:
        return {"ok": True}

    json_log("info", "telegram.message", update_id=update.get("update_id"), chat_id=chat_id)
    first_name = (msg.get("from") or {}).get("first_name")
    sent = notification_service.send("telegram", NotificationMessage(to=str(chat_id), message=reply_for(text, chat_id, first_name)))
    return {"ok": True, "replied": sent}
