from decimal import Decimal

import pytest
from pydantic import BaseModel, ValidationError

from possaas.app.validation import (
    CurrencyCode,
    Email,
    HexColor,
    Hostname,
    OptionalId,
    PaymentMethod,
    Quantity,
    Role,
)


class _Model(BaseModel):
    role: Role = "cashier"
    method: PaymentMethod = "cash"
    currency: CurrencyCode = "IDR"
    email: Email = "a@b.co"
    color: HexColor = "#000000"
    domain: Hostname = "pos.example.com"
    qty: Quantity = Decimal("1")
    customer_id: OptionalId = None


def test_enums_and_codes_are_normalized():
    m = _Model(role=" Owner ", method="CARD", currency="usd", email=" Ana@Example.COM ", color="#3b82f6")
    assert m.role == "owner"
    assert m.method == "card"
    assert m.currency == "USD"
    assert m.email == "ana@example.com"
    assert m.color == "#3B82F6"


def test_blank_optional_id_becomes_none():
    assert _Model(customer_id="  ").customer_id is None
    assert _Model(customer_id="c-1").customer_id == "c-1"


def test_hostname_is_lowercased():
    assert _Model(domain="Shop.Example.COM").domain == "shop.example.com"


@pytest.mark.parametrize(
    "field,value",
    [
        ("role", "superuser"),
        ("method", "cheque"),
        ("currency", "RUPIAH"),
        ("email", "not-an-email"),
        ("color", "blue"),
        ("domain", "localhost"),
        ("domain", "-bad-.example.com"),
        ("qty", Decimal("0")),
        ("qty", Decimal("1.0001")),
    ],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        _Model(**{field: value})
