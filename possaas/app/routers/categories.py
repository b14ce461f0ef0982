from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_store_id, require_store_role

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryIn(BaseModel):
    name: str
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


@router.get("")
def list_categories(store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT c.id, c.name, c.description, c.created_at,
                       (SELECT COUNT(*) FROM products p WHERE p.category_id = c.id) AS product_count
                FROM categories c
                WHERE c.store_id = %s
                ORDER BY c.name
                """,
                (store_id,),
            )
            return {"categories": cur.fetchall()}


@router.post("", status_code=201, dependencies=[Depends(require_store_role("manager"))])
def create_category(data: CategoryIn, store_id: str = Depends(get_store_id)):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO categories (id, store_id, name, description)
                VALUES (gen_random_uuid(), %s, %s, %s)
                RETURNING id
                """,
                (store_id, name, data.description),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/{category_id}", dependencies=[Depends(require_store_role("manager"))])
def update_category(category_id: str, data: CategoryUpdate, store_id: str = Depends(get_store_id)):
    patch = data.model_dump(exclude_none=True)
    if "name" in patch:
        patch["name"] = patch["name"].strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="name cannot be empty")
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE categories SET {', '.join(fields)} WHERE store_id = %s AND id = %s",
                list(patch.values()) + [store_id, category_id],
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
            return {"ok": True}


@router.delete("/{category_id}", dependencies=[Depends(require_store_role("manager"))])
def delete_category(category_id: str, store_id: str = Depends(get_store_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM categories WHERE store_id = %s AND id = %s", (store_id, category_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
            return {"ok": True}
