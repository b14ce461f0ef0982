from decimal import Decimal, ROUND_HALF_UP

import pytest

from possaas.app.pricing import compute_sale_totals, merge_cart_lines, q_money, q_qty

RATE = Decimal("0.085")


def test_reference_cart_totals():
    t = compute_sale_totals([(Decimal("10.00"), Decimal("2"))], tax_rate=RATE)
    assert t.line_totals == [Decimal("20.00")]
    assert t.subtotal == Decimal("20.00")
    assert t.tax == Decimal("1.70")
    assert t.total == Decimal("21.70")


@pytest.mark.parametrize(
    "lines",
    [
        [("0.99", "1")],
        [("19.99", "3"), ("0.05", "7")],
        [("1234.56", "0.333"), ("7.10", "2.5")],
        [("3.33", "3"), ("3.33", "3"), ("0.01", "1")],
        [("99999.99", "12")],
    ],
)
def test_total_equals_rounded_subtotal_with_tax(lines):
    t = compute_sale_totals([(Decimal(p), Decimal(q)) for p, q in lines], tax_rate=RATE)
    expected = (t.subtotal * (1 + RATE)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    assert t.total == expected
    assert t.total == t.subtotal + t.tax
    assert t.subtotal == sum(t.line_totals)


def test_empty_cart_is_zero():
    t = compute_sale_totals([], tax_rate=RATE)
    assert (t.subtotal, t.tax, t.total) == (Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))


def test_default_rate_comes_from_settings(monkeypatch):
    from possaas.app import pricing

    monkeypatch.setattr(pricing.settings, "tax_rate", Decimal("0.10"))
    assert compute_sale_totals([(Decimal("10"), Decimal("1"))]).total == Decimal("11.00")


def test_merge_cart_lines_sums_repeats_in_first_seen_order():
    merged = merge_cart_lines([("b", Decimal("1")), ("a", Decimal("2")), ("b", Decimal("0.5"))])
    assert merged == [("b", Decimal("1.500")), ("a", Decimal("2.000"))]


def test_quantizers_round_half_up():
    assert q_money("2.345") == Decimal("2.35")
    assert q_money(None) == Decimal("0.00")
    assert q_qty("1.0005") == Decimal("1.001")
