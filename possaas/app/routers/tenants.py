from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_tenant_id, require_admin, require_roles
from ..logs import json_log
from ..validation import TenantStatus

router = APIRouter(prefix="/api/tenants", tags=["tenants"])

_TENANT_COLUMNS = "id, business_name, email, phone, address, status, trial_ends_at, created_at, updated_at"


@router.get("/me")
def get_my_tenant(tenant_id: str = Depends(get_tenant_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_TENANT_COLUMNS} FROM tenants WHERE id = %s", (tenant_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="tenant not found")
            return {"tenant": row}


class TenantUpdate(BaseModel):
    business_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@router.put("/me")
def update_my_tenant(data: TenantUpdate, user=Depends(require_roles("owner"))):
    patch = data.model_dump(exclude_none=True)
    if "business_name" in patch and not patch["business_name"].strip():
        raise HTTPException(status_code=400, detail="business_name cannot be empty")
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch]
    params = list(patch.values()) + [user["tenant_id"]]
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE tenants
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                RETURNING {_TENANT_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="tenant not found")
            return {"tenant": row}


@router.get("", dependencies=[Depends(require_admin)])
def list_tenants(status: Optional[TenantStatus] = None, q: Optional[str] = None, limit: int = 100, offset: int = 0):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    where = ["true"]
    params: list = []
    if status:
        where.append("t.status = %s")
        params.append(status)
    if q and q.strip():
        where.append("(t.business_name ILIKE %s OR t.email ILIKE %s)")
        needle = f"%{q.strip()}%"
        params.extend([needle, needle])
    params.extend([limit, offset])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT t.id, t.business_name, t.email, t.phone, t.status, t.trial_ends_at, t.created_at,
                       (SELECT COUNT(*) FROM stores s WHERE s.tenant_id = t.id AND s.is_active) AS store_count,
                       (SELECT COUNT(*) FROM users u WHERE u.tenant_id = t.id AND u.is_active) AS user_count,
                       (SELECT p.name
                        FROM subscriptions sub
                        JOIN subscription_plans p ON p.id = sub.plan_id
                        WHERE sub.tenant_id = t.id AND sub.status = 'active'
                        ORDER BY sub.created_at DESC
                        LIMIT 1) AS plan_name
                FROM tenants t
                WHERE {' AND '.join(where)}
                ORDER BY t.created_at DESC
                LIMIT %s OFFSET %s
                """,
                params,
            )
            return {"tenants": cur.fetchall()}


class TenantStatusIn(BaseModel):
    status: TenantStatus


@router.put("/{tenant_id}/status")
def set_tenant_status(tenant_id: str, data: TenantStatusIn, admin=Depends(require_admin)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE tenants SET status = %s, updated_at = now() WHERE id = %s",
                (data.status, tenant_id),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="tenant not found")
            if data.status == "suspended":
                # Suspended tenants must sign in again once reinstated.
                cur.execute(
                    "DELETE FROM refresh_tokens WHERE user_id IN (SELECT id FROM users WHERE tenant_id = %s)",
                    (tenant_id,),
                )
    json_log("info", "tenant.status_changed", tenant_id=tenant_id, status=data.status, by=admin["user_id"])
    return {"ok": True}
