from fastapi import APIRouter, Depends

from ..db import get_conn
from ..deps import get_current_user, is_admin
from ..quotas import check_quota

router = APIRouter(prefix="/api/quota", tags=["quota"])


def _quota(user, resource: str):
    if is_admin(user):
        return {"allowed": True, "current_count": None, "max_allowed": None, "reason": None, "plan_name": None}
    with get_conn() as conn:
        with conn.cursor() as cur:
            return check_quota(cur, user["tenant_id"], resource).to_dict()


@router.get("/stores")
def store_quota(user=Depends(get_current_user)):
    return _quota(user, "stores")


@router.get("/users")
def user_quota(user=Depends(get_current_user)):
    return _quota(user, "users")
