import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import settings

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_ISSUER = "possaas"


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.verify(password, hashed)


def needs_rehash(hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.needs_update(hashed)


def hash_session_token(token: str) -> str:
    # One-way hash for short-lived challenge/reset tokens kept in the DB.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_refresh_token(token: str) -> str:
    # Keyed with JWT_REFRESH_SECRET so a DB dump alone cannot be matched against guessed tokens.
    digest = hmac.new(settings.jwt_refresh_secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()
    return "hmac256:" + digest


def new_opaque_token() -> str:
    return secrets.token_urlsafe(48)


def refresh_token_expiry(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=settings.refresh_token_days)


def create_access_token(*, user_id: str, tenant_id: Optional[str], role: str, email: str) -> str:
    """
    Mint a short-lived access token.

    Claims: sub (user id), tenant_id, role, email, plus iat/exp/iss/type.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id) if tenant_id else None,
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_minutes),
        "iss": TOKEN_ISSUER,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises JWTError when the token is invalid, expired or not an access token."""
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=TOKEN_ISSUER,
        options={"require_exp": True, "require_iat": True},
    )
    if payload.get("type") != "access":
        raise JWTError("token type mismatch")
    if not payload.get("sub"):
        raise JWTError("token has no subject")
    return payload
