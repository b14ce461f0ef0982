from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import List, Optional

from .pricing import q_money, q_qty

# Printable width in CSS pixels per paper roll.
PAPER_WIDTHS = {"58mm": 219, "80mm": 302}


@dataclass
class ReceiptLine:
    name: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal


@dataclass
class Receipt:
    receipt_number: str
    timestamp: datetime
    business_name: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    tax_rate: Decimal
    lines: List[ReceiptLine] = field(default_factory=list)
    business_address: Optional[str] = None
    business_phone: Optional[str] = None
    customer_name: Optional[str] = None
    cashier_name: Optional[str] = None
    currency_symbol: str = ""


def _fmt_qty(qty: Decimal) -> str:
    s = format(q_qty(qty), "f").rstrip("0").rstrip(".")
    return s or "0"


def _money(r: Receipt, v) -> str:
    return f"{escape(r.currency_symbol)}{q_money(v)}"


def _row(label: str, value: str, bold: bool = False) -> str:
    cls = "row bold" if bold else "row"
    return f'<div class="{cls}"><span>{escape(label)}</span><span>{value}</span></div>'


def render_thermal_receipt(r: Receipt, paper: str = "80mm") -> str:
    """Printable HTML for a thermal roll; `paper` is "58mm" or "80mm"."""
    if paper not in PAPER_WIDTHS:
        raise ValueError(f"unsupported paper width: {paper}")
    width = PAPER_WIDTHS[paper]
    rate_pct = format((r.tax_rate * 100).normalize(), "f")

    header = [f'<div class="center bold big">{escape(r.business_name)}</div>']
    if r.business_address:
        header.append(f'<div class="center small">{escape(r.business_address)}</div>')
    if r.business_phone:
        header.append(f'<div class="center small">{escape(r.business_phone)}</div>')

    items = []
    for line in r.lines:
        items.append(
            '<div class="item">'
            f'<div class="bold">{escape(line.name)}</div>'
            f'<div class="row small"><span>{_fmt_qty(line.quantity)}x @ {_money(r, line.unit_price)}</span>'
            f"<span>{_money(r, line.total)}</span></div>"
            "</div>"
        )

    footer_rows = [_row("PAYMENT:", escape(r.payment_method.upper()))]
    if r.customer_name:
        footer_rows.append(_row("CUSTOMER:", escape(r.customer_name)))
    if r.cashier_name:
        footer_rows.append(_row("CASHIER:", escape(r.cashier_name)))

    return (
        "<!DOCTYPE html><html><head>"
        f"<title>Receipt {escape(r.receipt_number)}</title>"
        "<style>"
        f"@media print {{ @page {{ size: {paper} auto; margin: 0; }} body {{ margin: 0; }} }}"
        f"body {{ font-family: 'Courier New', monospace; font-size: 12px; line-height: 1.2; width: {width}px; margin: 0 auto; padding: 8px; }}"
        ".center { text-align: center; } .bold { font-weight: bold; } .big { font-size: 14px; } .small { font-size: 10px; }"
        ".divider { border-top: 1px dashed #333; margin: 4px 0; }"
        ".row { display: flex; justify-content: space-between; margin: 2px 0; } .item { margin: 3px 0; }"
        ".footer { margin-top: 8px; text-align: center; font-size: 10px; }"
        "</style></head><body>"
        + "".join(header)
        + '<div class="divider"></div>'
        + f'<div class="center bold">RECEIPT #{escape(r.receipt_number)}</div>'
        + f'<div class="center small">{escape(r.timestamp.strftime("%Y-%m-%d %H:%M"))}</div>'
        + '<div class="divider"></div>'
        + "".join(items)
        + '<div class="divider"></div>'
        + _row("SUBTOTAL:", _money(r, r.subtotal))
        + _row(f"TAX ({rate_pct}%):", _money(r, r.tax))
        + _row("TOTAL:", _money(r, r.total), bold=True)
        + '<div class="divider"></div>'
        + "".join(footer_rows)
        + '<div class="footer"><div>Thank you for your business!</div><div>Please come again</div></div>'
        + "</body></html>"
    )
