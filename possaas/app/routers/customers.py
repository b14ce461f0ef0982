from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import get_store_id, require_store_role

router = APIRouter(prefix="/api/customers", tags=["customers"])

_CUSTOMER_COLUMNS = "id, store_id, first_name, last_name, email, phone, address, loyalty_points, created_at"


class CustomerIn(BaseModel):
    first_name: str
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    loyalty_points: Optional[int] = Field(default=None, ge=0)


@router.get("")
def list_customers(q: Optional[str] = None, store_id: str = Depends(get_store_id)):
    where = ["store_id = %s"]
    params: list = [store_id]
    if q and q.strip():
        needle = f"%{q.strip()}%"
        where.append("(first_name ILIKE %s OR last_name ILIKE %s OR phone ILIKE %s OR email ILIKE %s)")
        params.extend([needle] * 4)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_CUSTOMER_COLUMNS}
                FROM customers
                WHERE {' AND '.join(where)}
                ORDER BY first_name, last_name
                """,
                params,
            )
            return {"customers": cur.fetchall()}


@router.get("/{customer_id}")
def get_customer(customer_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_CUSTOMER_COLUMNS} FROM customers WHERE store_id = %s AND id = %s",
                (store_id, customer_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="customer not found")
            cur.execute(
                """
                SELECT COUNT(*) AS sales_count, COALESCE(SUM(total), 0) AS total_spent, MAX(created_at) AS last_purchase_at
                FROM sales
                WHERE customer_id = %s
                """,
                (customer_id,),
            )
            return {"customer": row, "summary": cur.fetchone()}


@router.post("", status_code=201)
def create_customer(data: CustomerIn, store_id: str = Depends(get_store_id)):
    first_name = data.first_name.strip()
    if not first_name:
        raise HTTPException(status_code=400, detail="first_name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO customers (id, store_id, first_name, last_name, email, phone, address)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (store_id, first_name, data.last_name, data.email, data.phone, data.address),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/{customer_id}")
def update_customer(customer_id: str, data: CustomerUpdate, store_id: str = Depends(get_store_id)):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE customers SET {', '.join(fields)} WHERE store_id = %s AND id = %s",
                list(patch.values()) + [store_id, customer_id],
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="customer not found")
            return {"ok": True}


@router.delete("/{customer_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_customer(customer_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM customers WHERE store_id = %s AND id = %s", (store_id, customer_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="customer not found")
            return {"ok": True}
