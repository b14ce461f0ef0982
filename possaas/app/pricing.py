from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from .config import settings

CENT = Decimal("0.01")
QTY_STEP = Decimal("0.001")


def q_money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def q_qty(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SaleTotals:
    line_totals: List[Decimal]
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def compute_sale_totals(lines: Iterable[Tuple[Decimal, Decimal]], tax_rate: Optional[Decimal] = None) -> SaleTotals:
    """
    Price a cart from (unit_price, quantity) pairs.

    Each line is rounded to the cent, the tax is rounded half-up on the
    subtotal, and total = subtotal + tax (equivalently round(subtotal * (1 + rate), 2)).
    """
    rate = settings.tax_rate if tax_rate is None else Decimal(str(tax_rate))
    line_totals = [q_money(Decimal(str(price)) * Decimal(str(qty))) for price, qty in lines]
    subtotal = q_money(sum(line_totals, Decimal("0")))
    tax = q_money(subtotal * rate)
    return SaleTotals(line_totals=line_totals, subtotal=subtotal, tax=tax, total=subtotal + tax)


def merge_cart_lines(items: Iterable[Tuple[str, Decimal]]) -> List[Tuple[str, Decimal]]:
    """Collapse repeated product ids into one line, keeping first-seen order."""
    merged: dict = {}
    for product_id, qty in items:
        key = str(product_id)
        merged[key] = merged.get(key, Decimal("0")) + q_qty(qty)
    return list(merged.items())
