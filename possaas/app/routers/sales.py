from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from ..config import settings
from ..db import get_conn
from ..deps import get_current_user, get_store_id
from ..logs import json_log
from ..pricing import compute_sale_totals, merge_cart_lines, q_money, q_qty
from ..receipts import PAPER_WIDTHS, Receipt, ReceiptLine, render_thermal_receipt
from ..validation import OptionalId, PaymentMethod, Quantity

router = APIRouter(prefix="/api/sales", tags=["sales"])

WALK_IN_CUSTOMER = "walk-in"


class SaleItemIn(BaseModel):
    product_id: str
    quantity: Quantity


class SaleIn(BaseModel):
    items: List[SaleItemIn] = Field(min_length=1)
    payment_method: PaymentMethod
    customer_id: OptionalId = None


def price_cart(lines: List[Tuple[str, Decimal]], products: Dict[str, dict]) -> List[Tuple[dict, Decimal, Decimal]]:
    """
    Attach the stored price to each cart line and check it can be sold.

    Returns (product_row, quantity, unit_price) tuples; raises 400 on the first bad line.
    """
    priced = []
    for product_id, qty in lines:
        p = products.get(product_id)
        if p is None:
            raise HTTPException(status_code=400, detail=f"Product {product_id} not found")
        if not p["is_active"]:
            raise HTTPException(status_code=400, detail=f"Product {p['name']} is not active")
        available = q_qty(p["stock"])
        if available < qty:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for {p['name']}. Available: {available}, Requested: {qty}",
            )
        priced.append((p, qty, q_money(p["price"])))
    return priced


@router.post("", status_code=201)
def create_sale(data: SaleIn, store_id: str = Depends(get_store_id), user=Depends(get_current_user)):
    customer_id = data.customer_id
    if customer_id and customer_id.lower() == WALK_IN_CUSTOMER:
        customer_id = None
    lines = merge_cart_lines((i.product_id.strip().lower(), i.quantity) for i in data.items)

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if customer_id:
                    cur.execute(
                        "SELECT first_name, last_name FROM customers WHERE store_id = %s AND id = %s",
                        (store_id, customer_id),
                    )
                    customer = cur.fetchone()
                    if not customer:
                        raise HTTPException(status_code=400, detail="customer not found")
                else:
                    customer = None

                # Row locks hold the stock we check until the decrement commits.
                cur.execute(
                    """
                    SELECT id, name, price, stock, is_active
                    FROM products
                    WHERE store_id = %s AND id = ANY(%s::uuid[])
                    ORDER BY id
                    FOR UPDATE
                    """,
                    (store_id, [pid for pid, _ in lines]),
                )
                products = {str(r["id"]).lower(): r for r in cur.fetchall()}
                priced = price_cart(lines, products)
                totals = compute_sale_totals((price, qty) for _p, qty, price in priced)

                cur.execute(
                    """
                    INSERT INTO sales
                      (id, store_id, user_id, customer_id, subtotal, tax_amount, total, payment_method, status)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, 'completed')
                    RETURNING id, receipt_number, store_id, user_id, customer_id, subtotal, tax_amount, total,
                              payment_method, status, created_at
                    """,
                    (store_id, user["user_id"], customer_id, totals.subtotal, totals.tax, totals.total, data.payment_method),
                )
                sale = cur.fetchone()
                receipt_items = []
                for (p, qty, unit_price), line_total in zip(priced, totals.line_totals):
                    cur.execute(
                        """
                        INSERT INTO sale_items (id, sale_id, product_id, product_name, quantity, unit_price, total_price)
                        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                        """,
                        (sale["id"], p["id"], p["name"], qty, unit_price, line_total),
                    )
                    cur.execute(
                        """
                        UPDATE products
                        SET stock = stock - %s, updated_at = now()
                        WHERE id = %s AND stock >= %s
                        """,
                        (qty, p["id"], qty),
                    )
                    if cur.rowcount != 1:
                        raise HTTPException(status_code=400, detail=f"Insufficient stock for {p['name']}")
                    cur.execute(
                        """
                        INSERT INTO inventory_movements
                          (id, store_id, product_id, user_id, type, quantity, reason, reference_sale_id)
                        VALUES
                          (gen_random_uuid(), %s, %s, %s, 'out', %s, %s, %s)
                        """,
                        (store_id, p["id"], user["user_id"], qty, f"Sale #{sale['receipt_number']}", sale["id"]),
                    )
                    receipt_items.append(
                        {
                            "product_id": str(p["id"]),
                            "name": p["name"],
                            "quantity": str(qty),
                            "unit_price": str(unit_price),
                            "total": str(line_total),
                        }
                    )

    json_log(
        "info",
        "sale.created",
        store_id=store_id,
        sale_id=sale["id"],
        total=str(totals.total),
        items=len(priced),
        payment_method=data.payment_method,
    )
    return {
        "sale": sale,
        "calculated_subtotal": str(totals.subtotal),
        "calculated_tax": str(totals.tax),
        "calculated_total": str(totals.total),
        "receipt_data": {
            "receipt_number": str(sale["receipt_number"]),
            "timestamp": sale["created_at"],
            "items": receipt_items,
            "subtotal": str(totals.subtotal),
            "tax": str(totals.tax),
            "total": str(totals.total),
            "payment_method": data.payment_method,
            "customer_name": " ".join(x for x in [customer.get("first_name"), customer.get("last_name")] if x)
            if customer
            else None,
        },
    }


@router.get("")
def list_sales(
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = 100,
    store_id: str = Depends(get_store_id),
):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    where = ["s.store_id = %s"]
    params: list = [store_id]
    if start:
        where.append("s.created_at >= %s::date")
        params.append(start)
    if end:
        where.append("s.created_at < (%s::date + interval '1 day')")
        params.append(end)
    params.append(limit)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT s.id, s.receipt_number, s.customer_id, s.user_id, s.subtotal, s.tax_amount, s.total,
                       s.payment_method, s.status, s.created_at,
                       c.first_name AS customer_first_name, c.last_name AS customer_last_name
                FROM sales s
                LEFT JOIN customers c ON c.id = s.customer_id
                WHERE {' AND '.join(where)}
                ORDER BY s.created_at DESC
                LIMIT %s
                """,
                params,
            )
            return {"sales": cur.fetchall()}


def _load_sale(cur, store_id: str, sale_id: str):
    cur.execute(
        """
        SELECT s.id, s.receipt_number, s.store_id, s.user_id, s.customer_id, s.subtotal, s.tax_amount, s.total,
               s.payment_method, s.status, s.created_at,
               c.first_name AS customer_first_name, c.last_name AS customer_last_name,
               u.first_name AS cashier_first_name, u.email AS cashier_email
        FROM sales s
        LEFT JOIN customers c ON c.id = s.customer_id
        LEFT JOIN users u ON u.id = s.user_id
        WHERE s.store_id = %s AND s.id = %s
        """,
        (store_id, sale_id),
    )
    sale = cur.fetchone()
    if not sale:
        raise HTTPException(status_code=404, detail="sale not found")
    cur.execute(
        """
        SELECT id, product_id, product_name, quantity, unit_price, total_price
        FROM sale_items
        WHERE sale_id = %s
        ORDER BY product_name
        """,
        (sale_id,),
    )
    return sale, cur.fetchall()


@router.get("/{sale_id}")
def get_sale(sale_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            sale, items = _load_sale(cur, store_id, sale_id)
            return {"sale": sale, "items": items}


@router.get("/{sale_id}/receipt", response_class=HTMLResponse)
def sale_receipt(sale_id: str, paper: str = "80mm", store_id: str = Depends(get_store_id)):
    if paper not in PAPER_WIDTHS:
        raise HTTPException(status_code=400, detail=f"paper must be one of {sorted(PAPER_WIDTHS)}")
    with get_conn() as conn:
        with conn.cursor() as cur:
            sale, items = _load_sale(cur, store_id, sale_id)
            cur.execute("SELECT name, address, phone FROM stores WHERE id = %s", (store_id,))
            store = cur.fetchone() or {}
    customer_name = " ".join(x for x in [sale.get("customer_first_name"), sale.get("customer_last_name")] if x) or None
    receipt = Receipt(
        receipt_number=str(sale["receipt_number"]),
        timestamp=sale["created_at"],
        business_name=store.get("name") or "Store",
        business_address=store.get("address"),
        business_phone=store.get("phone"),
        subtotal=sale["subtotal"],
        tax=sale["tax_amount"],
        total=sale["total"],
        payment_method=sale["payment_method"],
        tax_rate=settings.tax_rate,
        customer_name=customer_name,
        cashier_name=sale.get("cashier_first_name") or sale.get("cashier_email"),
        lines=[
            ReceiptLine(name=i["product_name"], quantity=i["quantity"], unit_price=i["unit_price"], total=i["total_price"])
            for i in items
        ],
    )
    return HTMLResponse(render_thermal_receipt(receipt, paper=paper))
