from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError

from .db import get_conn
from .security import decode_access_token

ROLE_RANK = {"cashier": 1, "manager": 2, "owner": 3, "administrator": 4}


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    raise HTTPException(status_code=401, detail="missing token")


def get_current_user(authorization: Optional[str] = Header(None)):
    token = _extract_bearer_token(authorization)
    try:
        claims = decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="invalid token") from None

    # Deactivated users lose access before their access token expires.
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, tenant_id, store_id, role, email, is_active
                FROM users
                WHERE id = %s
                """,
                (claims["sub"],),
            )
            row = cur.fetchone()
    if not row or not row["is_active"]:
        raise HTTPException(status_code=401, detail="invalid token")
    return {
        "user_id": str(row["id"]),
        "tenant_id": str(row["tenant_id"]) if row["tenant_id"] else None,
        "store_id": str(row["store_id"]) if row["store_id"] else None,
        "role": row["role"],
        "email": row["email"],
    }


def get_optional_user(authorization: Optional[str] = Header(None)):
    if not authorization:
        return None
    return get_current_user(authorization)


def is_admin(user) -> bool:
    return bool(user) and user.get("role") == "administrator"


def require_roles(*roles: str):
    allowed = set(roles)

    def _dep(user=Depends(get_current_user)):
        if user["role"] not in allowed:
            raise HTTPException(status_code=403, detail="insufficient permissions")
        return user

    return _dep


require_admin = require_roles("administrator")


def get_tenant_id(user=Depends(get_current_user)) -> str:
    if not user.get("tenant_id"):
        raise HTTPException(status_code=400, detail="user is not bound to a tenant")
    return user["tenant_id"]


def assert_store_access(cur, user, store_id: str, *, include_inactive: bool = False):
    """
    Raise unless `user` may act in `store_id`.

    Deactivated stores answer 404 to everyone but administrators; owners reach them only
    with `include_inactive` (reactivation).
    """
    cur.execute("SELECT id, tenant_id, is_active FROM stores WHERE id = %s", (store_id,))
    store = cur.fetchone()
    if not store:
        raise HTTPException(status_code=404, detail="store not found")
    if is_admin(user):
        return store
    if str(store["tenant_id"]) != str(user.get("tenant_id")):
        raise HTTPException(status_code=403, detail="no store access")
    if not store["is_active"] and not (include_inactive and user["role"] == "owner"):
        raise HTTPException(status_code=404, detail="store not found")
    if user["role"] != "owner" and str(user.get("store_id")) != str(store_id):
        raise HTTPException(status_code=403, detail="no store access")
    return store


def get_store_id(
    x_store_id: Optional[str] = Header(None, alias="X-Store-Id"),
    user=Depends(get_current_user),
) -> str:
    store_id = (x_store_id or "").strip() or user.get("store_id")
    if not store_id:
        raise HTTPException(status_code=400, detail="missing store id")
    with get_conn() as conn:
        with conn.cursor() as cur:
            assert_store_access(cur, user, store_id)
    return str(store_id)


def require_store_role(min_role: str):
    """Store-scoped guard: the caller must reach the store and rank at least `min_role`."""
    threshold = ROLE_RANK[min_role]

    def _dep(store_id: str = Depends(get_store_id), user=Depends(get_current_user)):
        if ROLE_RANK.get(user["role"], 0) < threshold:
            raise HTTPException(status_code=403, detail="insufficient permissions")
        return True

    return _dep
