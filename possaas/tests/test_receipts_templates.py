from datetime import datetime, timezone
from decimal import Decimal

import pytest

from possaas.app.email_templates import (
    broadcast_email,
    password_reset_email,
    payment_reminder_email,
    welcome_email,
)
from possaas.app.receipts import Receipt, ReceiptLine, render_thermal_receipt


def _receipt(**overrides):
    data = dict(
        receipt_number="1001",
        timestamp=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
        business_name="Kopi <Corner>",
        subtotal=Decimal("20.00"),
        tax=Decimal("1.70"),
        total=Decimal("21.70"),
        payment_method="cash",
        tax_rate=Decimal("0.085"),
        lines=[ReceiptLine(name="Latte", quantity=Decimal("2.000"), unit_price=Decimal("10.00"), total=Decimal("20.00"))],
        customer_name="Ana Lee",
    )
    data.update(overrides)
    return Receipt(**data)


def test_thermal_receipt_contains_totals_and_lines():
    html = render_thermal_receipt(_receipt(), paper="58mm")
    assert "RECEIPT #1001" in html
    assert "TAX (8.5%):" in html
    assert "21.70" in html
    assert "2x @ 10.00" in html
    assert "PAYMENT:" in html and "CASH" in html
    assert "CUSTOMER:" in html
    assert "width: 219px" in html
    assert "Thank you for your business!" in html


def test_thermal_receipt_escapes_store_text():
    html = render_thermal_receipt(_receipt())
    assert "Kopi &lt;Corner&gt;" in html
    assert "<Corner>" not in html


def test_thermal_receipt_rejects_unknown_paper():
    with pytest.raises(ValueError):
        render_thermal_receipt(_receipt(), paper="A4")


def test_email_builders_return_subject_html_and_text():
    subject, html, text = welcome_email(name="Ana", business_name="Kopi & Co")
    assert subject.startswith("Welcome")
    assert "Kopi &amp; Co" in html
    assert "Kopi & Co" in text

    subject, html, text = password_reset_email(name="Ana", token="tok123", minutes=30)
    assert "reset-password?token=tok123" in text
    assert "30 minutes" in html

    subject, _html, text = payment_reminder_email(
        plan_name="Basic", amount=Decimal("99000"), currency="IDR", due_date=datetime(2024, 6, 1)
    )
    assert subject == "Payment Reminder - Action Required"
    assert "2024-06-01" in text


def test_broadcast_splits_paragraphs():
    _subject, html, text = broadcast_email(title="Maintenance", body="First line.\n\nSecond <b>line</b>.")
    assert html.count("<p>First line.</p>") == 1
    assert "Second &lt;b&gt;line&lt;/b&gt;." in html
    assert text == "First line.\n\nSecond <b>line</b>."
