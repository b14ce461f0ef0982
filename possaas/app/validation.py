from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _blank_to_none(v):
    if v is None:
        return v
    s = str(v).strip()
    return s or None


# Canonical values mirror the CHECK constraints in `possaas/db/migrations/001_init.sql`.
Role = Annotated[Literal["administrator", "owner", "manager", "cashier"], BeforeValidator(_to_lower_str)]
PaymentMethod = Annotated[Literal["cash", "card", "digital"], BeforeValidator(_to_lower_str)]
CashFlowType = Annotated[Literal["income", "expense"], BeforeValidator(_to_lower_str)]
PaymentStatus = Annotated[Literal["paid", "unpaid"], BeforeValidator(_to_lower_str)]
MovementType = Annotated[Literal["in", "out", "adjustment"], BeforeValidator(_to_lower_str)]
TenantStatus = Annotated[Literal["trial", "active", "suspended", "expired"], BeforeValidator(_to_lower_str)]
SubscriptionStatus = Annotated[Literal["pending", "active", "cancelled", "expired"], BeforeValidator(_to_lower_str)]
BillingStatus = Annotated[Literal["pending", "paid", "failed", "refunded"], BeforeValidator(_to_lower_str)]
PlanInterval = Annotated[Literal["monthly", "yearly"], BeforeValidator(_to_lower_str)]
TimeRange = Annotated[Literal["7days", "30days", "90days", "1year"], BeforeValidator(_to_lower_str)]
NotificationChannel = Annotated[Literal["email", "whatsapp", "telegram", "all"], BeforeValidator(_to_lower_str)]

CurrencyCode = Annotated[str, BeforeValidator(_to_upper_str), StringConstraints(pattern=r"^[A-Z]{3}$")]
Email = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]
Password = Annotated[str, StringConstraints(min_length=6, max_length=128)]
HexColor = Annotated[str, BeforeValidator(_to_upper_str), StringConstraints(pattern=r"^#[0-9A-F]{6}$")]
Hostname = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(max_length=253, pattern=r"^([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"),
]

# Stock is tracked to three decimals (weighed goods), money to two.
Quantity = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=3)]
Money = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]
StockLevel = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=3)]
OptionalId = Annotated[str | None, BeforeValidator(_blank_to_none)]
