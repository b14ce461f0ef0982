from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_current_user, get_store_id, require_store_role
from ..pricing import q_qty

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("/movements")
def list_movements(product_id: Optional[str] = None, limit: int = 200, store_id: str = Depends(get_store_id)):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    where = ["m.store_id = %s"]
    params: list = [store_id]
    if product_id:
        where.append("m.product_id = %s")
        params.append(product_id)
    params.append(limit)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT m.id, m.product_id, p.name AS product_name, m.type, m.quantity, m.reason,
                       m.reference_sale_id, m.user_id, m.created_at
                FROM inventory_movements m
                JOIN products p ON p.id = m.product_id
                WHERE {' AND '.join(where)}
                ORDER BY m.created_at DESC
                LIMIT %s
                """,
                params,
            )
            return {"movements": cur.fetchall()}


class AdjustmentIn(BaseModel):
    product_id: str
    # Signed change: positive receives stock, negative writes it off.
    quantity: Decimal
    reason: str


def apply_adjustment(current: Decimal, delta: Decimal) -> Decimal:
    new_stock = q_qty(current) + q_qty(delta)
    if new_stock < 0:
        raise HTTPException(
            status_code=400,
            detail=f"adjustment would make stock negative (current {q_qty(current)}, change {q_qty(delta)})",
        )
    return new_stock


@router.post("/adjustments", dependencies=[Depends(require_store_role("manager"))])
def adjust_stock(data: AdjustmentIn, store_id: str = Depends(get_store_id), user=Depends(get_current_user)):
    delta = q_qty(data.quantity)
    if delta == 0:
        raise HTTPException(status_code=400, detail="quantity must not be zero")
    if not data.reason.strip():
        raise HTTPException(status_code=400, detail="reason is required")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, stock FROM products WHERE store_id = %s AND id = %s FOR UPDATE",
                    (store_id, data.product_id),
                )
                product = cur.fetchone()
                if not product:
                    raise HTTPException(status_code=404, detail="product not found")
                new_stock = apply_adjustment(Decimal(str(product["stock"])), delta)
                cur.execute(
                    "UPDATE products SET stock = %s, updated_at = now() WHERE id = %s",
                    (new_stock, data.product_id),
                )
                cur.execute(
                    """
                    INSERT INTO inventory_movements (id, store_id, product_id, user_id, type, quantity, reason)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                    """,
                    (store_id, data.product_id, user["user_id"], "in" if delta > 0 else "adjustment", delta, data.reason.strip()),
                )
                return {"ok": True, "stock": new_stock}
