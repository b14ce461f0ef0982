from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import require_admin
from ..email_templates import broadcast_email
from ..logs import json_log
from ..notifications import NotificationMessage, notification_service
from ..validation import NotificationChannel, TenantStatus

router = APIRouter(prefix="/api/notifications", tags=["notifications"], dependencies=[Depends(require_admin)])


@router.get("/status")
def provider_status():
    return {"providers": notification_service.provider_status()}


class TestMessageIn(BaseModel):
    channel: NotificationChannel
    to: str = Field(min_length=1)
    message: str = Field(default="Test notification from POS SaaS", min_length=1)


@router.post("/test")
def send_test(data: TestMessageIn, admin=Depends(require_admin)):
    ok = notification_service.send(
        data.channel,
        NotificationMessage(to=data.to.strip(), message=data.message, subject="Test notification"),
    )
    json_log("info", "notify.test", channel=data.channel, by=admin["user_id"], ok=ok)
    if not ok:
        raise HTTPException(status_code=502, detail="notification could not be delivered")
    return {"ok": True}


class BroadcastIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    tenant_status: Optional[TenantStatus] = None


@router.post("/broadcast")
def broadcast(data: BroadcastIn, admin=Depends(require_admin)):
    """Send a message to the owner of every tenant, optionally only tenants in one status."""
    where, params = ["u.role = 'owner'", "u.is_active = true"], []
    if data.tenant_status:
        where.append("t.status = %s")
        params.append(data.tenant_status)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT u.email, u.phone, u.telegram_chat_id
                FROM users u
                JOIN tenants t ON t.id = u.tenant_id
                WHERE {' AND '.join(where)}
                """,
                params,
            )
            recipients = cur.fetchall()

    subject, html, text = broadcast_email(title=data.title, body=data.body)
    delivered = 0
    for r in recipients:
        sent = notification_service.fan_out(r, NotificationMessage(to="", message=text, subject=subject, html=html))
        if any(sent.values()):
            delivered += 1
    json_log("info", "notify.broadcast", by=admin["user_id"], recipients=len(recipients), delivered=delivered)
    return {"recipients": len(recipients), "delivered": delivered}
