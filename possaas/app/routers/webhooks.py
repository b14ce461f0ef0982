import json
from typing import Optional

import stripe
from fastapi import APIRouter, Header, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from .. import stripe_gateway
from ..billing_events import handle_stripe_event
from ..config import settings
from ..db import get_conn
from ..logs import json_log

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def record_webhook_event(cur, provider: str, event_id: str, event_type: str, payload: dict) -> bool:
    """Insert the event id; False means it was seen before."""
    cur.execute(
        """
        INSERT INTO webhook_events (id, provider, event_id, event_type, payload_json)
        VALUES (gen_random_uuid(), %s, %s, %s, %s::jsonb)
        ON CONFLICT (provider, event_id) DO NOTHING
        """,
        (provider, event_id, event_type, json.dumps(payload, default=str)),
    )
    return cur.rowcount > 0


def parse_stripe_event(payload: bytes, signature: Optional[str]) -> dict:
    """
    Verify and decode a Stripe webhook body.

    Unsigned payloads are only accepted in a dev environment that opted in with
    STRIPE_WEBHOOK_ALLOW_UNVERIFIED.
    """
    secret = settings.stripe_webhook_secret
    if secret:
        try:
            event = stripe_gateway.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            json_log("warning", "stripe.webhook.rejected", error=str(exc))
            raise HTTPException(status_code=400, detail=f"Webhook Error: {exc}") from exc
    elif settings.is_dev and settings.stripe_allow_unverified:
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise HTTPException(status_code=400, detail="Webhook Error: invalid payload") from exc
    else:
        json_log("warning", "stripe.webhook.unverified_rejected")
        raise HTTPException(status_code=400, detail="Webhook Error: signing secret is not configured")
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise HTTPException(status_code=400, detail="Webhook Error: invalid payload")
    return event


@router.post("/stripe")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature")):
    payload = await request.body()
    event = parse_stripe_event(payload, stripe_signature)
    return await run_in_threadpool(process_stripe_event, event)


def process_stripe_event(event: dict) -> dict:
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if not record_webhook_event(cur, "stripe", event["id"], event["type"], event):
                    json_log("info", "stripe.webhook.duplicate", event_id=event["id"], event_type=event["type"])
                    return {"received": True, "duplicate": True}
                outcome = handle_stripe_event(cur, event)
    json_log("info", "stripe.webhook.handled", event_id=event["id"], event_type=event["type"], outcome=outcome)
    return {"received": True}
