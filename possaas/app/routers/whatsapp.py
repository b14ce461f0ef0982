import hashlib
import hmac
import json
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..db import get_conn
from ..logs import json_log
from ..notifications import NotificationMessage, WhatsAppProvider
from .webhooks import record_webhook_event

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.get("/whatsapp", response_class=PlainTextResponse)
def whatsapp_verify(request: Request):
    """Meta's subscription handshake: echo hub.challenge when the verify token matches."""
    q = request.query_params
    mode = q.get("hub.mode")
    token = q.get("hub.verify_token") or ""
    challenge = q.get("hub.challenge") or ""
    expected = settings.whatsapp_verify_token
    if mode == "subscribe" and expected and hmac.compare_digest(token, expected):
        json_log("info", "whatsapp.webhook.verified")
        return PlainTextResponse(challenge)
    json_log("warning", "whatsapp.webhook.verify_failed", mode=mode)
    raise HTTPException(status_code=403, detail="verification failed")


def verify_signature(payload: bytes, signature: Optional[str], app_secret: str) -> bool:
    if not signature or not signature.startswith("sha256="):
        return False
    digest = hmac.new(app_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.split("=", 1)[1], digest)


def _iter_changes(body: dict):
    for entry in body.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") == "messages":
                yield change.get("value") or {}


def handle_whatsapp_payload(body: dict[str, Any], provider: Optional[WhatsAppProvider] = None) -> dict:
    provider = provider or WhatsAppProvider()
    handled = 0
    with get_conn() as conn:
        with conn.cursor() as cur:
            for value in _iter_changes(body):
                for status in value.get("statuses") or []:
                    json_log(
                        "info",
                        "whatsapp.status",
                        message_id=status.get("id"),
                        status=status.get("status"),
                        recipient=status.get("recipient_id"),
                    )
                for msg in value.get("messages") or []:
                    msg_id = str(msg.get("id") or "")
                    if not msg_id or not record_webhook_event(cur, "whatsapp", msg_id, msg.get("type") or "unknown", msg):
                        continue
                    handled += 1
                    sender = str(msg.get("from") or "")
                    json_log("info", "whatsapp.message", message_id=msg_id, sender=sender, type=msg.get("type"))
                    text = ((msg.get("text") or {}).get("body") or "").strip()
                    if text and sender and provider.is_configured():
                        try:
                            provider.send(NotificationMessage(to=sender, message=f"Received: {text}"))
                        except (OSError, RuntimeError) as exc:
                            json_log("error", "whatsapp.reply_failed", message_id=msg_id, error=str(exc))
    return {"ok": True, "handled": handled}


@router.post("/whatsapp")
async def whatsapp_webhook(request: Request, x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256")):
    payload = await request.body()
    if settings.whatsapp_app_secret and not verify_signature(payload, x_hub_signature_256, settings.whatsapp_app_secret):
        json_log("warning", "whatsapp.webhook.bad_signature")
        raise HTTPException(status_code=401, detail="invalid signature")
    try:
        body = json.loads(payload.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="invalid payload") from exc
    if body.get("object") != "whatsapp_business_account":
        return {"ok": True, "handled": 0}
    return await run_in_threadpool(handle_whatsapp_payload, body)
