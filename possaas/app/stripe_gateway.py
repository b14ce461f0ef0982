"""
Thin wrapper over the Stripe SDK for the calls the billing routes make.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe
from fastapi import HTTPException

from .billing_events import ZERO_DECIMAL_CURRENCIES
from .config import settings
from .logs import json_log


def configured() -> bool:
    return bool(settings.stripe_secret_key)


def _client_ready() -> None:
    if not configured():
        raise HTTPException(status_code=503, detail="payments are not configured")
    stripe.api_key = settings.stripe_secret_key


def amount_to_minor(amount: Decimal, currency: str) -> int:
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(str(amount)).to_integral_value())
    return int((Decimal(str(amount)) * 100).to_integral_value())


def _fail(op: str, exc: Exception):
    json_log("error", "stripe.call_failed", op=op, error=str(exc))
    raise HTTPException(status_code=502, detail=f"payment provider error during {op}") from exc


def ensure_customer(cur, tenant: Dict[str, Any]) -> str:
    """Return the tenant's Stripe customer id, creating and persisting one when missing."""
    if tenant.get("stripe_customer_id"):
        return tenant["stripe_customer_id"]
    _client_ready()
    try:
        customer = stripe.Customer.create(
            email=tenant["email"],
            name=tenant["business_name"],
            metadata={"tenant_id": str(tenant["id"])},
        )
    except stripe.StripeError as exc:
        _fail("customer.create", exc)
    cur.execute(
        "UPDATE tenants SET stripe_customer_id = %s, updated_at = now() WHERE id = %s",
        (customer["id"], tenant["id"]),
    )
    return customer["id"]


def create_payment_intent(*, amount: Decimal, currency: str, customer_id: str, metadata: Dict[str, str]):
    _client_ready()
    try:
        return stripe.PaymentIntent.create(
            amount=amount_to_minor(amount, currency),
            currency=currency.lower(),
            customer=customer_id,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as exc:
        _fail("payment_intent.create", exc)


def retrieve_payment_intent(payment_intent_id: str):
    _client_ready()
    try:
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as exc:
        _fail("payment_intent.retrieve", exc)


def cancel_subscription(stripe_subscription_id: str) -> None:
    _client_ready()
    try:
        stripe.Subscription.cancel(stripe_subscription_id)
    except stripe.StripeError as exc:
        _fail("subscription.cancel", exc)


def construct_event(payload: bytes, signature: Optional[str], secret: str) -> stripe.Event:
    """
    Verified `stripe.Event` (a dict subclass, so handlers read it like the unsigned dev payload).

    Raises ValueError or stripe.SignatureVerificationError when the payload is not from Stripe.
    """
    return stripe.Webhook.construct_event(payload, signature or "", secret)
