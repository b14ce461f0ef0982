from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..deps import get_current_user, is_admin, require_roles
from ..logs import json_log
from ..quotas import enforce_quota
from ..security import hash_password
from ..validation import Email, OptionalId, Password, Role

router = APIRouter(prefix="/api/users", tags=["users"])

_USER_COLUMNS = """
    id, tenant_id, store_id, username, email, first_name, last_name, phone, role,
    is_active, mfa_enabled, telegram_chat_id, last_login_at, created_at, updated_at
"""
OWNER_ASSIGNABLE_ROLES = {"manager", "cashier"}


def _load_target(cur, actor, user_id: str):
    cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="user not found")
    if not is_admin(actor) and str(row["tenant_id"]) != str(actor.get("tenant_id")):
        # Do not reveal users of other tenants.
        raise HTTPException(status_code=404, detail="user not found")
    return row


def _check_store_in_tenant(cur, store_id: Optional[str], tenant_id: Optional[str]):
    if not store_id:
        return
    cur.execute("SELECT tenant_id FROM stores WHERE id = %s", (store_id,))
    row = cur.fetchone()
    if not row or str(row["tenant_id"]) != str(tenant_id):
        raise HTTPException(status_code=400, detail="store does not belong to this tenant")


@router.get("")
def list_users(tenant_id: Optional[str] = None, user=Depends(require_roles("administrator", "owner", "manager"))):
    where = []
    params: list = []
    if is_admin(user):
        if tenant_id:
            where.append("tenant_id = %s")
            params.append(tenant_id)
    elif user["role"] == "owner":
        where.append("tenant_id = %s")
        params.append(user["tenant_id"])
    else:
        where.append("tenant_id = %s AND store_id = %s")
        params.extend([user["tenant_id"], user.get("store_id")])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_USER_COLUMNS}
                FROM users
                WHERE {' AND '.join(where) or 'true'}
                ORDER BY created_at
                """,
                params,
            )
            return {"users": cur.fetchall()}


@router.get("/{user_id}")
def get_user(user_id: str, user=Depends(get_current_user)):
    if user["user_id"] != user_id and user["role"] == "cashier":
        raise HTTPException(status_code=403, detail="insufficient permissions")
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"user": _load_target(cur, user, user_id)}


class UserIn(BaseModel):
    email: Email
    password: Password
    role: Role = "cashier"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None
    store_id: OptionalId = None
    tenant_id: OptionalId = None


class UserUpdate(BaseModel):
    email: Optional[Email] = None
    password: Optional[Password] = None
    role: Optional[Role] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None
    store_id: OptionalId = None
    is_active: Optional[bool] = None
    telegram_chat_id: Optional[str] = None


@router.post("", status_code=201)
def create_user(data: UserIn, user=Depends(require_roles("administrator", "owner"))):
    if is_admin(user):
        tenant_id = data.tenant_id
        if data.role != "administrator" and not tenant_id:
            raise HTTPException(status_code=400, detail="tenant_id is required")
        if data.role == "administrator":
            tenant_id = None
    else:
        if data.role not in OWNER_ASSIGNABLE_ROLES:
            raise HTTPException(status_code=403, detail="owners may only create managers and cashiers")
        if not data.store_id:
            raise HTTPException(status_code=400, detail="store_id is required")
        tenant_id = user["tenant_id"]

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if tenant_id:
                    cur.execute("SELECT id FROM tenants WHERE id = %s FOR UPDATE", (tenant_id,))
                    if not cur.fetchone():
                        raise HTTPException(status_code=404, detail="tenant not found")
                    _check_store_in_tenant(cur, data.store_id, tenant_id)
                    enforce_quota(cur, user, "users", tenant_id)
                cur.execute(
                    f"""
                    INSERT INTO users
                      (id, tenant_id, store_id, username, email, first_name, last_name, phone, password_hash, role)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (
                        tenant_id,
                        data.store_id,
                        (data.username or "").strip() or None,
                        data.email,
                        data.first_name,
                        data.last_name,
                        data.phone,
                        hash_password(data.password),
                        data.role,
                    ),
                )
                created = cur.fetchone()
    json_log("info", "user.created", user_id=created["id"], tenant_id=tenant_id, role=data.role, by=user["user_id"])
    return {"user": created}


@router.put("/{user_id}")
def update_user(user_id: str, data: UserUpdate, user=Depends(require_roles("administrator", "owner"))):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        return {"ok": True}
    with get_conn() as conn:
        with conn.cursor() as cur:
            target = _load_target(cur, user, user_id)
            if not is_admin(user):
                if target["role"] in {"administrator", "owner"} and str(target["id"]) != user["user_id"]:
                    raise HTTPException(status_code=403, detail="cannot modify this user")
                if "role" in patch and patch["role"] != target["role"] and patch["role"] not in OWNER_ASSIGNABLE_ROLES:
                    raise HTTPException(status_code=403, detail="owners may only assign manager or cashier roles")
                if str(target["id"]) == user["user_id"] and ("role" in patch or patch.get("is_active") is False):
                    raise HTTPException(status_code=400, detail="cannot change your own role or deactivate yourself")
                _check_store_in_tenant(cur, patch.get("store_id"), user["tenant_id"])
                if patch.get("is_active") is True and not target["is_active"]:
                    enforce_quota(cur, user, "users", user["tenant_id"])

            if "password" in patch:
                patch["password_hash"] = hash_password(patch.pop("password"))
            fields = [f"{k} = %s" for k in patch]
            cur.execute(
                f"""
                UPDATE users
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                list(patch.values()) + [user_id],
            )
            updated = cur.fetchone()
            if "password_hash" in patch or patch.get("is_active") is False:
                cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user_id,))
            return {"user": updated}


@router.delete("/{user_id}")
def delete_user(user_id: str, user=Depends(require_roles("administrator", "owner"))):
    if user_id == user["user_id"]:
        raise HTTPException(status_code=400, detail="cannot delete yourself")
    with get_conn() as conn:
        with conn.cursor() as cur:
            target = _load_target(cur, user, user_id)
            if not is_admin(user) and target["role"] in {"administrator", "owner"}:
                raise HTTPException(status_code=403, detail="cannot delete administrators or owners")
            cur.execute("SELECT 1 FROM sales WHERE user_id = %s LIMIT 1", (user_id,))
            if cur.fetchone():
                cur.execute("UPDATE users SET is_active = false, updated_at = now() WHERE id = %s", (user_id,))
                cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user_id,))
                return {"ok": True, "deactivated": True}
            cur.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return {"ok": True, "deactivated": False}
