import base64
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from ..db import get_conn
from ..deps import get_tenant_id, require_roles
from ..logs import json_log
from ..storage.s3 import put_public_bytes, s3_enabled
from ..validation import HexColor, Hostname

router = APIRouter(prefix="/api/themes", tags=["themes"])

THEME_DEFAULTS = {
    "primary_color": "#3B82F6",
    "secondary_color": "#6B7280",
    "accent_color": "#10B981",
    "background_color": "#FFFFFF",
    "text_color": "#1F2937",
    "border_radius": "8",
    "font_size": "14",
    "font_family": "Inter",
    "dark_mode": False,
    "logo_url": None,
    "favicon_url": None,
    "company_name": None,
    "custom_domain": None,
    "custom_css": None,
    "hide_branding": False,
}
_THEME_COLUMNS = ", ".join(["tenant_id"] + list(THEME_DEFAULTS) + ["updated_at"])

LOGO_TYPES = {"image/png": "png", "image/jpeg": "jpg", "image/svg+xml": "svg", "image/webp": "webp"}
LOGO_MAX_BYTES = 2 * 1024 * 1024
# Without object storage the logo is stored inline, so keep it small.
INLINE_LOGO_MAX_BYTES = 256 * 1024


class ThemeIn(BaseModel):
    primary_color: Optional[HexColor] = None
    secondary_color: Optional[HexColor] = None
    accent_color: Optional[HexColor] = None
    background_color: Optional[HexColor] = None
    text_color: Optional[HexColor] = None
    border_radius: Optional[str] = Field(default=None, pattern=r"^\d{1,2}$")
    font_size: Optional[str] = Field(default=None, pattern=r"^\d{1,2}$")
    font_family: Optional[str] = Field(default=None, max_length=100)
    dark_mode: Optional[bool] = None
    company_name: Optional[str] = Field(default=None, max_length=200)
    favicon_url: Optional[str] = Field(default=None, max_length=2048)
    custom_css: Optional[str] = Field(default=None, max_length=20000)


def upsert_theme(cur, tenant_id: str, patch: dict):
    """Write the given fields, creating the tenant's row from the defaults when it does not exist yet."""
    cols = list(patch)
    insert_cols = ", ".join(["tenant_id"] + cols)
    placeholders = ", ".join(["%s"] * (len(cols) + 1))
    updates = ", ".join([f"{c} = EXCLUDED.{c}" for c in cols] + ["updated_at = now()"])
    cur.execute(
        f"""
        INSERT INTO theme_settings ({insert_cols})
        VALUES ({placeholders})
        ON CONFLICT (tenant_id) DO UPDATE SET {updates}
        RETURNING {_THEME_COLUMNS}
        """,
        [tenant_id] + list(patch.values()),
    )
    return cur.fetchone()


@router.get("")
def get_theme(tenant_id: str = Depends(get_tenant_id)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_THEME_COLUMNS} FROM theme_settings WHERE tenant_id = %s", (tenant_id,))
            row = cur.fetchone()
    return {"theme": row or {"tenant_id": tenant_id, **THEME_DEFAULTS}}


@router.put("")
def update_theme(data: ThemeIn, user=Depends(require_roles("owner", "manager"))):
    patch = data.model_dump(exclude_none=True)
    if not patch:
        raise HTTPException(status_code=400, detail="no theme fields given")
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"theme": upsert_theme(cur, user["tenant_id"], patch)}


def _store_logo(tenant_id: str, raw: bytes, content_type: str) -> str:
    if s3_enabled():
        key = f"logos/{tenant_id}/{uuid.uuid4().hex}.{LOGO_TYPES[content_type]}"
        return put_public_bytes(key=key, data=raw, content_type=content_type)
    if len(raw) > INLINE_LOGO_MAX_BYTES:
        raise HTTPException(status_code=413, detail="logo too large without object storage (max 256KB)")
    return f"data:{content_type};base64,{base64.b64encode(raw).decode('ascii')}"


@router.post("/logo")
def upload_logo(file: UploadFile = File(...), user=Depends(require_roles("owner"))):
    content_type = (file.content_type or "").strip().lower()
    if content_type not in LOGO_TYPES:
        raise HTTPException(status_code=400, detail=f"logo must be one of {sorted(LOGO_TYPES)}")
    raw = file.file.read() or b""
    if not raw:
        raise HTTPException(status_code=400, detail="empty file")
    if len(raw) > LOGO_MAX_BYTES:
        raise HTTPException(status_code=413, detail="logo too large (max 2MB)")
    url = _store_logo(user["tenant_id"], raw, content_type)
    with get_conn() as conn:
        with conn.cursor() as cur:
            theme = upsert_theme(cur, user["tenant_id"], {"logo_url": url})
    json_log("info", "theme.logo_uploaded", tenant_id=user["tenant_id"], size_bytes=len(raw), s3=s3_enabled())
    return {"theme": theme}


class CustomDomainIn(BaseModel):
    custom_domain: Optional[Hostname] = None


@router.put("/custom-domain")
def set_custom_domain(data: CustomDomainIn, user=Depends(require_roles("owner"))):
    with get_conn() as conn:
        with conn.cursor() as cur:
            if data.custom_domain:
                cur.execute(
                    "SELECT tenant_id FROM theme_settings WHERE custom_domain = %s AND tenant_id <> %s",
                    (data.custom_domain, user["tenant_id"]),
                )
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="domain already in use by another tenant")
            return {"theme": upsert_theme(cur, user["tenant_id"], {"custom_domain": data.custom_domain})}


class WhiteLabelIn(BaseModel):
    hide_branding: bool


@router.put("/white-label")
def set_white_label(data: WhiteLabelIn, user=Depends(require_roles("owner"))):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"theme": upsert_theme(cur, user["tenant_id"], {"hide_branding": data.hide_branding})}
