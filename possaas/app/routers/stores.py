from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import assert_store_access, get_current_user, is_admin, require_roles
from ..logs import json_log
from ..quotas import enforce_quota
from .cashflow import seed_default_categories

router = APIRouter(prefix="/api/stores", tags=["stores"])

_STORE_COLUMNS = "s.id, s.tenant_id, s.owner_id, s.name, s.address, s.phone, s.email, s.description, s.is_active, s.created_at, s.updated_at"


class StoreIn(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    # Administrators create stores on behalf of a tenant.
    tenant_id: Optional[str] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("")
def list_stores(include_inactive: bool = False, user=Depends(get_current_user)):
    where = []
    params: list = []
    if not include_inactive:
        where.append("s.is_active = true")
    if is_admin(user):
        pass
    elif user["role"] == "owner":
        where.append("s.tenant_id = %s")
        params.append(user["tenant_id"])
    else:
        if not user.get("store_id"):
            return {"stores": []}
        where.append("s.id = %s")
        params.append(user["store_id"])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_STORE_COLUMNS}
                FROM stores s
                WHERE {' AND '.join(where) or 'true'}
                ORDER BY s.created_at
                """,
                params,
            )
            return {"stores": cur.fetchall()}


@router.get("/{store_id}")
def get_store(store_id: str, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            assert_store_access(cur, user, store_id)
            cur.execute(f"SELECT {_STORE_COLUMNS} FROM stores s WHERE s.id = %s", (store_id,))
            return {"store": cur.fetchone()}


@router.post("", status_code=201)
def create_store(data: StoreIn, user=Depends(require_roles("owner", "administrator"))):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    tenant_id = data.tenant_id if is_admin(user) else user["tenant_id"]
    if not tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id is required")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                # Serialize concurrent creations for one tenant so two requests cannot both pass the quota.
                cur.execute("SELECT id FROM tenants WHERE id = %s FOR UPDATE", (tenant_id,))
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="tenant not found")
                quota = enforce_quota(cur, user, "stores", tenant_id)
                owner_id = None if is_admin(user) else user["user_id"]
                if owner_id is None:
                    cur.execute(
                        "SELECT id FROM users WHERE tenant_id = %s AND role = 'owner' ORDER BY created_at LIMIT 1",
                        (tenant_id,),
                    )
                    owner = cur.fetchone()
                    owner_id = owner["id"] if owner else None
                cur.execute(
                    """
                    INSERT INTO stores (id, tenant_id, owner_id, name, address, phone, email, description)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (tenant_id, owner_id, name, data.address, data.phone, data.email, data.description),
                )
                store_id = cur.fetchone()["id"]
                seed_default_categories(cur, store_id)

    json_log("info", "store.created", tenant_id=tenant_id, store_id=store_id, by=user["user_id"])
    out = {"id": store_id}
    if quota is not None:
        out["quota"] = {"current_count": quota.current_count + 1, "max_allowed": quota.max_allowed}
    return out


@router.put("/{store_id}", dependencies=[Depends(require_roles("owner", "administrator"))])
def update_store(store_id: str, data: StoreUpdate, user=Depends(get_current_user)):
    patch = data.model_dump(exclude_none=True)
    if "name" in patch and not patch["name"].strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    with get_conn() as conn:
        with conn.cursor() as cur:
            assert_store_access(cur, user, store_id, include_inactive=True)
            if patch.get("is_active") is True and not is_admin(user):
                cur.execute("SELECT is_active, tenant_id FROM stores WHERE id = %s", (store_id,))
                current = cur.fetchone()
                if current and not current["is_active"]:
                    # Reactivation counts against the plan like a new store.
                    enforce_quota(cur, user, "stores", str(current["tenant_id"]))
            cur.execute(
                f"""
                UPDATE stores
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                """,
                list(patch.values()) + [store_id],
            )
            return {"ok": True}


@router.delete("/{store_id}", dependencies=[Depends(require_roles("owner", "administrator"))])
def delete_store(store_id: str, user=Depends(get_current_user)):
    """Stores with sales history are deactivated instead of removed."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            assert_store_access(cur, user, store_id)
            cur.execute("SELECT 1 FROM sales WHERE store_id = %s LIMIT 1", (store_id,))
            if cur.fetchone():
                cur.execute("UPDATE stores SET is_active = false, updated_at = now() WHERE id = %s", (store_id,))
                return {"ok": True, "deactivated": True}
            cur.execute("DELETE FROM stores WHERE id = %s", (store_id,))
            return {"ok": True, "deactivated": False}
