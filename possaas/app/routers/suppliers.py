from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_store_id, require_store_role

router = APIRouter(prefix="/api/suppliers", tags=["suppliers"])


class SupplierIn(BaseModel):
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@router.get("")
def list_suppliers(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, contact_person, email, phone, address, created_at
                FROM suppliers
                WHERE store_id = %s
                ORDER BY name
                """,
                (store_id,),
            )
            return {"suppliers": cur.fetchall()}


@router.post("", status_code=201, dependencies=[Depends(require_store_role("manager"))])
def create_supplier(data: SupplierIn, store_id: str = Depends(get_store_id)):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO suppliers (id, store_id, name, contact_person, email, phone, address)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (store_id, name, data.contact_person, data.email, data.phone, data.address),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/{supplier_id}", dependencies=[Depends(require_store_role("manager"))])
def update_supplier(supplier_id: str, data: SupplierUpdate, store_id: str = Depends(get_store_id)):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE suppliers SET {', '.join(fields)} WHERE store_id = %s AND id = %s",
                list(patch.values()) + [store_id, supplier_id],
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="supplier not found")
            return {"ok": True}


@router.delete("/{supplier_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_supplier(supplier_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM suppliers WHERE store_id = %s AND id = %s", (store_id, supplier_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="supplier not found")
            return {"ok": True}
