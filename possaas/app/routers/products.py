from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_current_user, get_store_id, require_store_role
from ..validation import Money, OptionalId, StockLevel

router = APIRouter(prefix="/api/products", tags=["products"])

_PRODUCT_COLUMNS = """
    p.id, p.store_id, p.category_id, p.supplier_id, p.name, p.description, p.sku, p.barcode,
    p.price, p.cost_price, p.stock, p.min_stock_level, p.is_active, p.created_at, p.updated_at
"""


class ProductIn(BaseModel):
    name: str
    sku: str
    price: Money
    description: Optional[str] = None
    barcode: Optional[str] = None
    cost_price: Optional[Money] = None
    stock: Optional[StockLevel] = None
    min_stock_level: Optional[StockLevel] = None
    category_id: OptionalId = None
    supplier_id: OptionalId = None
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Money] = None
    description: Optional[str] = None
    barcode: Optional[str] = None
    cost_price: Optional[Money] = None
    min_stock_level: Optional[StockLevel] = None
    category_id: OptionalId = None
    supplier_id: OptionalId = None
    is_active: Optional[bool] = None


@router.get("")
def list_products(
    q: Optional[str] = None,
    category_id: Optional[str] = None,
    active_only: bool = False,
    store_id: str = Depends(get_store_id),
):
    where = ["p.store_id = %s"]
    params: list = [store_id]
    if q and q.strip():
        where.append("(p.name ILIKE %s OR p.sku ILIKE %s OR p.barcode = %s)")
        needle = q.strip()
        params.extend([f"%{needle}%", f"%{needle}%", needle])
    if category_id:
        where.append("p.category_id = %s")
        params.append(category_id)
    if active_only:
        where.append("p.is_active = true")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_PRODUCT_COLUMNS}, c.name AS category_name
                FROM products p
                LEFT JOIN categories c ON c.id = p.category_id
                WHERE {' AND '.join(where)}
                ORDER BY p.name
                """,
                params,
            )
            return {"products": cur.fetchall()}


@router.get("/low-stock")
def low_stock_products(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_PRODUCT_COLUMNS}
                FROM products p
                WHERE p.store_id = %s AND p.is_active = true AND p.stock <= p.min_stock_level
                ORDER BY p.stock, p.name
                """,
                (store_id,),
            )
            return {"products": cur.fetchall()}


@router.get("/barcode/{code}")
def product_by_barcode(code: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_PRODUCT_COLUMNS}
                FROM products p
                WHERE p.store_id = %s AND (p.barcode = %s OR p.sku = %s)
                ORDER BY (p.barcode = %s) DESC
                LIMIT 1
                """,
                (store_id, code, code, code),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="product not found")
            return {"product": row}


@router.get("/{product_id}")
def get_product(product_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products p WHERE p.store_id = %s AND p.id = %s",
                (store_id, product_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="product not found")
            return {"product": row}


@router.post("", status_code=201, dependencies=[Depends(require_store_role("manager"))])
def create_product(data: ProductIn, store_id: str = Depends(get_store_id), user=Depends(get_current_user)):
    name, sku = data.name.strip(), data.sku.strip()
    if not name or not sku:
        raise HTTPException(status_code=400, detail="name and sku are required")
    stock = data.stock or Decimal("0")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO products
                      (id, store_id, category_id, supplier_id, name, description, sku, barcode,
                       price, cost_price, stock, min_stock_level, is_active)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, 5), %s)
                    RETURNING id
                    """,
                    (
                        store_id,
                        data.category_id,
                        data.supplier_id,
                        name,
                        data.description,
                        sku,
                        (data.barcode or "").strip() or None,
                        data.price,
                        data.cost_price,
                        stock,
                        data.min_stock_level,
                        data.is_active,
                    ),
                )
                product_id = cur.fetchone()["id"]
                if stock > 0:
                    cur.execute(
                        """
                        INSERT INTO inventory_movements (id, store_id, product_id, user_id, type, quantity, reason)
                        VALUES (gen_random_uuid(), %s, %s, %s, 'in', %s, 'Opening stock')
                        """,
                        (store_id, product_id, user["user_id"], stock),
                    )
                return {"id": product_id}


@router.put("/{product_id}", dependencies=[Depends(require_store_role("manager"))])
def update_product(product_id: str, data: ProductUpdate, store_id: str = Depends(get_store_id)):
    # Stock moves only through sales and /api/inventory adjustments.
    patch = data.model_dump(exclude_none=True)
    for k in ("name", "sku"):
        if k in patch:
            patch[k] = patch[k].strip()
            if not patch[k]:
                raise HTTPException(status_code=400, detail=f"{k} cannot be empty")
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE products
                SET {', '.join(fields)}, updated_at = now()
                WHERE store_id = %s AND id = %s
                """,
                list(patch.values()) + [store_id, product_id],
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="product not found")
            return {"ok": True}


@router.delete("/{product_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_product(product_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM sale_items WHERE product_id = %s LIMIT 1", (product_id,))
            if cur.fetchone():
                cur.execute(
                    "UPDATE products SET is_active = false, updated_at = now() WHERE store_id = %s AND id = %s",
                    (store_id, product_id),
                )
                deactivated = True
            else:
                cur.execute("DELETE FROM products WHERE store_id = %s AND id = %s", (store_id, product_id))
                deactivated = False
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="product not found")
            return {"ok": True, "deactivated": deactivated}
