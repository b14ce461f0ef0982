from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..config import settings
from ..db import get_conn
from ..deps import get_current_user
from ..logs import json_log
from ..mfa import get_vault
from ..notifications import NotificationMessage, notification_service
from ..email_templates import password_reset_email
from ..security import (
    create_access_token,
    hash_password,
    hash_refresh_token,
    hash_session_token,
    needs_rehash,
    new_opaque_token,
    refresh_token_expiry,
    verify_password,
)
from ..validation import Email, Password

router = APIRouter(prefix="/api/auth", tags=["auth"])
MFA_CHALLENGE_MINUTES = 10
MFA_MAX_ATTEMPTS = 10
RESET_TOKEN_MINUTES = 60

_USER_COLUMNS = """
    u.id, u.tenant_id, u.store_id, u.username, u.email, u.first_name, u.last_name, u.phone,
    u.role, u.is_active, u.mfa_enabled, u.last_login_at, u.created_at
"""


def public_user(row) -> dict:
    hidden = {"password_hash", "mfa_secret_enc", "mfa_pending_secret_enc"}
    return {k: v for k, v in dict(row).items() if k not in hidden}


def _issue_tokens(cur, user) -> dict:
    refresh_token = new_opaque_token()
    cur.execute(
        """
        INSERT INTO refresh_tokens (id, user_id, token_hash, expires_at)
        VALUES (gen_random_uuid(), %s, %s, %s)
        """,
        (user["id"], hash_refresh_token(refresh_token), refresh_token_expiry()),
    )
    return {
        "access_token": create_access_token(
            user_id=user["id"], tenant_id=user.get("tenant_id"), role=user["role"], email=user["email"]
        ),
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "expires_in": settings.access_token_minutes * 60,
    }


class RegisterIn(BaseModel):
    business_name: str
    email: Email
    password: Password
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@router.post("/register", status_code=201)
def register(data: RegisterIn):
    business_name = data.business_name.strip()
    if not business_name:
        raise HTTPException(status_code=400, detail="business_name is required")
    trial_ends_at = datetime.now(timezone.utc) + timedelta(days=settings.trial_days)

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT 1 FROM users WHERE email = %s
                    UNION ALL
                    SELECT 1 FROM tenants WHERE email = %s
                    LIMIT 1
                    """,
                    (data.email, data.email),
                )
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="email already registered")

                cur.execute(
                    """
                    INSERT INTO tenants (id, business_name, email, phone, address, status, trial_ends_at)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, 'trial', %s)
                    RETURNING id, business_name, email, status, trial_ends_at
                    """,
                    (business_name, data.email, data.phone, data.address, trial_ends_at),
                )
                tenant = cur.fetchone()
                cur.execute(
                    """
                    INSERT INTO users (id, tenant_id, username, email, first_name, last_name, phone, password_hash, role)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, 'owner')
                    RETURNING id, tenant_id, store_id, username, email, first_name, last_name, phone, role, is_active, created_at
                    """,
                    (
                        tenant["id"],
                        (data.username or "").strip() or None,
                        data.email,
                        data.first_name.strip(),
                        (data.last_name or "").strip() or None,
                        data.phone,
                        hash_password(data.password),
                    ),
                )
                user = cur.fetchone()
                tokens = _issue_tokens(cur, user)

    json_log("info", "auth.registered", tenant_id=tenant["id"], user_id=user["id"])
    notification_service.send_welcome(
        {"email": data.email, "phone": data.phone},
        name=data.first_name.strip(),
        business_name=business_name,
    )
    return {**tokens, "user": public_user(user), "tenant": tenant}


class LoginIn(BaseModel):
    email: str
    password: str


@router.post("/login")
def login(data: LoginIn):
    ident = (data.email or "").strip().lower()
    if not ident or not data.password:
        raise HTTPException(status_code=400, detail="email and password are required")

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_USER_COLUMNS}, u.password_hash, u.mfa_secret_enc, t.status AS tenant_status
                FROM users u
                LEFT JOIN tenants t ON t.id = u.tenant_id
                WHERE u.email = %s OR lower(u.username) = %s
                LIMIT 1
                """,
                (ident, ident),
            )
            user = cur.fetchone()
            if not user or not user["is_active"] or not verify_password(data.password, user["password_hash"]):
                raise HTTPException(status_code=401, detail="invalid credentials")
            if user.get("tenant_status") == "suspended":
                raise HTTPException(status_code=403, detail="tenant is suspended")

            if needs_rehash(user["password_hash"]):
                cur.execute(
                    "UPDATE users SET password_hash = %s WHERE id = %s",
                    (hash_password(data.password), user["id"]),
                )

            if user.get("mfa_enabled"):
                if not user.get("mfa_secret_enc"):
                    raise HTTPException(status_code=500, detail="MFA is enabled but no secret is stored for this user")
                mfa_token = new_opaque_token()
                cur.execute(
                    """
                    INSERT INTO auth_mfa_challenges (id, user_id, token_hash, expires_at)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    """,
                    (
                        user["id"],
                        hash_session_token(mfa_token),
                        datetime.now(timezone.utc) + timedelta(minutes=MFA_CHALLENGE_MINUTES),
                    ),
                )
                return {"mfa_required": True, "mfa_token": mfa_token, "user_id": str(user["id"])}

            cur.execute("UPDATE users SET last_login_at = now() WHERE id = %s", (user["id"],))
            tokens = _issue_tokens(cur, user)
            return {**tokens, "user": public_user({k: v for k, v in user.items() if k != "tenant_status"})}


class MfaVerifyIn(BaseModel):
    mfa_token: str
    code: str


@router.post("/mfa/verify")
def mfa_verify(data: MfaVerifyIn):
    """Second login step: trade a live MFA challenge plus a TOTP code for tokens."""
    token = (data.mfa_token or "").strip()
    if not token or not (data.code or "").strip():
        raise HTTPException(status_code=400, detail="mfa_token and code are required")
    now = datetime.now(timezone.utc)

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, user_id, expires_at, attempts, consumed_at
                    FROM auth_mfa_challenges
                    WHERE token_hash = %s
                    FOR UPDATE
                    """,
                    (hash_session_token(token),),
                )
                ch = cur.fetchone()
                if not ch or ch["consumed_at"] is not None or ch["expires_at"] < now:
                    raise HTTPException(status_code=401, detail="invalid or expired MFA token")
                if int(ch["attempts"] or 0) >= MFA_MAX_ATTEMPTS:
                    cur.execute("UPDATE auth_mfa_challenges SET consumed_at = now() WHERE id = %s", (ch["id"],))
                    raise HTTPException(status_code=401, detail="too many MFA attempts")

                cur.execute(
                    f"SELECT {_USER_COLUMNS}, u.mfa_secret_enc FROM users u WHERE u.id = %s",
                    (ch["user_id"],),
                )
                user = cur.fetchone()
                if not user or not user["is_active"] or not user.get("mfa_secret_enc"):
                    raise HTTPException(status_code=401, detail="invalid credentials")
                if not get_vault().check(user["mfa_secret_enc"], data.code):
                    cur.execute("UPDATE auth_mfa_challenges SET attempts = attempts + 1 WHERE id = %s", (ch["id"],))
                    raise HTTPException(status_code=401, detail="invalid MFA code")

                cur.execute("UPDATE auth_mfa_challenges SET consumed_at = now() WHERE id = %s", (ch["id"],))
                cur.execute("UPDATE users SET last_login_at = now() WHERE id = %s", (user["id"],))
                tokens = _issue_tokens(cur, user)
                return {**tokens, "user": public_user(user)}


class RefreshIn(BaseModel):
    refresh_token: str


@router.post("/refresh")
def refresh(data: RefreshIn):
    token = (data.refresh_token or "").strip()
    if not token:
        raise HTTPException(status_code=401, detail="invalid refresh token")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT rt.id AS token_id, rt.expires_at, u.id, u.tenant_id, u.role, u.email, u.is_active
                FROM refresh_tokens rt
                JOIN users u ON u.id = rt.user_id
                WHERE rt.token_hash = %s
                """,
                (hash_refresh_token(token),),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=401, detail="invalid refresh token")
            if row["expires_at"] < datetime.now(timezone.utc):
                cur.execute("DELETE FROM refresh_tokens WHERE id = %s", (row["token_id"],))
                conn.commit()
                raise HTTPException(status_code=401, detail="refresh token expired")
            if not row["is_active"]:
                raise HTTPException(status_code=401, detail="invalid refresh token")
    return {
        "access_token": create_access_token(
            user_id=row["id"], tenant_id=row["tenant_id"], role=row["role"], email=row["email"]
        ),
        "token_type": "bearer",
        "expires_in": settings.access_token_minutes * 60,
    }


@router.post("/logout")
def logout(data: RefreshIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM refresh_tokens WHERE token_hash = %s",
                (hash_refresh_token((data.refresh_token or "").strip()),),
            )
    return {"ok": True}


@router.post("/logout-all")
def logout_all(user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user["user_id"],))
            return {"ok": True, "revoked": cur.rowcount}


@router.get("/me")
def me(user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_USER_COLUMNS} FROM users u WHERE u.id = %s", (user["user_id"],))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            tenant = None
            if row["tenant_id"]:
                cur.execute(
                    """
                    SELECT id, business_name, email, phone, address, status, trial_ends_at
                    FROM tenants
                    WHERE id = %s
                    """,
                    (row["tenant_id"],),
                )
                tenant = cur.fetchone()
    return {"user": public_user(row), "tenant": tenant}


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: Password


@router.post("/change-password")
def change_password(data: ChangePasswordIn, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT password_hash FROM users WHERE id = %s", (user["user_id"],))
            row = cur.fetchone()
            if not row or not verify_password(data.current_password, row["password_hash"]):
                raise HTTPException(status_code=400, detail="current password is incorrect")
            cur.execute(
                "UPDATE users SET password_hash = %s, updated_at = now() WHERE id = %s",
                (hash_password(data.new_password), user["user_id"]),
            )
            # Other devices must sign in again.
            cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user["user_id"],))
    return {"ok": True}


class ForgotPasswordIn(BaseModel):
    email: Email


@router.post("/forgot-password")
def forgot_password(data: ForgotPasswordIn):
    """Always answers ok so the endpoint cannot be used to probe for accounts."""
    token = new_opaque_token()
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, email, first_name FROM users WHERE email = %s AND is_active = true",
                (data.email,),
            )
            row = cur.fetchone()
            if not row:
                return {"ok": True}
            cur.execute(
                """
                INSERT INTO password_reset_tokens (id, user_id, token_hash, expires_at)
                VALUES (gen_random_uuid(), %s, %s, %s)
                """,
                (
                    row["id"],
                    hash_session_token(token),
                    datetime.now(timezone.utc) + timedelta(minutes=RESET_TOKEN_MINUTES),
                ),
            )
    subject, html, text = password_reset_email(name=row["first_name"] or row["email"], token=token, minutes=RESET_TOKEN_MINUTES)
    notification_service.send("email", NotificationMessage(to=row["email"], message=text, subject=subject, html=html))
    return {"ok": True}


class ResetPasswordIn(BaseModel):
    token: str
    new_password: Password


@router.post("/reset-password")
def reset_password(data: ResetPasswordIn):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, user_id
                    FROM password_reset_tokens
                    WHERE token_hash = %s AND used_at IS NULL AND expires_at > now()
                    FOR UPDATE
                    """,
                    (hash_session_token((data.token or "").strip()),),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=400, detail="invalid or expired reset token")
                cur.execute("UPDATE password_reset_tokens SET used_at = now() WHERE id = %s", (row["id"],))
                cur.execute(
                    "UPDATE users SET password_hash = %s, updated_at = now() WHERE id = %s",
                    (hash_password(data.new_password), row["user_id"]),
                )
                cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (row["user_id"],))
    return {"ok": True}


@router.get("/mfa/status")
def mfa_status(user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT mfa_enabled, (mfa_pending_secret_enc IS NOT NULL) AS pending
                FROM users
                WHERE id = %s
                """,
                (user["user_id"],),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            return {"enabled": bool(row["mfa_enabled"]), "pending": bool(row["pending"])}


@router.post("/mfa/setup")
def mfa_setup(user=Depends(get_current_user)):
    """Start enrollment: the new secret stays pending until /mfa/enable confirms a code."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT email, mfa_enabled FROM users WHERE id = %s", (user["user_id"],))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            if row["mfa_enabled"]:
                raise HTTPException(status_code=409, detail="MFA is already enabled")
            enrollment = get_vault().enroll(row["email"])
            cur.execute(
                "UPDATE users SET mfa_pending_secret_enc = %s WHERE id = %s",
                (enrollment.secret_enc, user["user_id"]),
            )
            return {"secret": enrollment.secret, "otpauth_url": enrollment.otpauth_url}


class MfaCodeIn(BaseModel):
    code: str


@router.post("/mfa/enable")
def mfa_enable(data: MfaCodeIn, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT mfa_enabled, mfa_pending_secret_enc FROM users WHERE id = %s",
                (user["user_id"],),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            if row["mfa_enabled"]:
                raise HTTPException(status_code=409, detail="MFA is already enabled")
            if not row["mfa_pending_secret_enc"]:
                raise HTTPException(status_code=409, detail="no pending MFA setup; call /api/auth/mfa/setup first")
            if not get_vault().check(row["mfa_pending_secret_enc"], data.code):
                raise HTTPException(status_code=401, detail="invalid MFA code")
            cur.execute(
                """
                UPDATE users
                SET mfa_enabled = true,
                    mfa_secret_enc = mfa_pending_secret_enc,
                    mfa_pending_secret_enc = NULL,
                    mfa_verified_at = now()
                WHERE id = %s
                """,
                (user["user_id"],),
            )
            cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user["user_id"],))
    return {"ok": True}


@router.post("/mfa/disable")
def mfa_disable(data: MfaCodeIn, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT mfa_enabled, mfa_secret_enc FROM users WHERE id = %s", (user["user_id"],))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            if not row["mfa_enabled"] or not row["mfa_secret_enc"]:
                raise HTTPException(status_code=409, detail="MFA is not enabled")
            if not get_vault().check(row["mfa_secret_enc"], data.code):
                raise HTTPException(status_code=401, detail="invalid MFA code")
            cur.execute(
                """
                UPDATE users
                SET mfa_enabled = false,
                    mfa_secret_enc = NULL,
                    mfa_pending_secret_enc = NULL,
                    mfa_verified_at = NULL
                WHERE id = %s
                """,
                (user["user_id"],),
            )
            cur.execute("DELETE FROM refresh_tokens WHERE user_id = %s", (user["user_id"],))
    return {"ok": True}
