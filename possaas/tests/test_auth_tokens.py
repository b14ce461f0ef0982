from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from jose import JWTError, jwt

from possaas.app import security
from possaas.app.routers import auth as auth_router
from possaas.app.routers.auth import RefreshIn, refresh
from possaas.app.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    hash_refresh_token,
    hash_session_token,
    needs_rehash,
    verify_password,
)
from possaas.tests.fakes import FakeConn, FakeCursor


def test_password_hash_roundtrip():
    h = hash_password("s3cret!")
    assert h != "s3cret!"
    assert verify_password("s3cret!", h) is True
    assert verify_password("wrong", h) is False
    assert verify_password("s3cret!", None) is False
    assert needs_rehash(h) is False


def test_token_hashes_are_prefixed_and_stable():
    assert hash_session_token("abc").startswith("sha256:")
    assert hash_refresh_token("abc").startswith("hmac256:")
    assert hash_refresh_token("abc") == hash_refresh_token("abc")
    assert hash_refresh_token("abc") != hash_refresh_token("abd")


def test_access_token_roundtrip_carries_tenant_and_role():
    token = create_access_token(user_id="u-1", tenant_id="t-1", role="owner", email="o@x.io")
    claims = decode_access_token(token)
    assert claims["sub"] == "u-1"
    assert claims["tenant_id"] == "t-1"
    assert claims["role"] == "owner"
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == security.settings.access_token_minutes * 60


def test_decode_rejects_non_access_tokens():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "u-1", "iat": now, "exp": now + timedelta(minutes=5), "iss": security.TOKEN_ISSUER, "type": "refresh"},
        security.settings.jwt_secret,
        algorithm=security.settings.jwt_algorithm,
    )
    with pytest.raises(JWTError):
        decode_access_token(token)


def test_decode_rejects_expired_tokens():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {"sub": "u-1", "iat": past, "exp": past + timedelta(minutes=5), "iss": security.TOKEN_ISSUER, "type": "access"},
        security.settings.jwt_secret,
        algorithm=security.settings.jwt_algorithm,
    )
    with pytest.raises(JWTError):
        decode_access_token(token)


def _refresh_cursor(rows):
    return FakeCursor(
        [
            ("from refresh_tokens rt join users u", rows),
            ("delete from refresh_tokens where id = %s", 1),
        ]
    )


def test_unknown_or_revoked_refresh_token_is_401(monkeypatch):
    cur = _refresh_cursor([])
    monkeypatch.setattr(auth_router, "get_conn", lambda: FakeConn(cur))
    with pytest.raises(HTTPException) as exc_info:
        refresh(RefreshIn(refresh_token="gone"))
    assert exc_info.value.status_code == 401
    assert cur.executed[0][1] == (hash_refresh_token("gone"),)


def test_expired_refresh_token_is_deleted_and_401(monkeypatch):
    row = {
        "token_id": "rt-1",
        "expires_at": datetime.now(timezone.utc) - timedelta(seconds=1),
        "id": "u-1",
        "tenant_id": "t-1",
        "role": "cashier",
        "email": "c@x.io",
        "is_active": True,
    }
    cur = _refresh_cursor([row])
    conn = FakeConn(cur)
    monkeypatch.setattr(auth_router, "get_conn", lambda: conn)

    with pytest.raises(HTTPException) as exc_info:
        refresh(RefreshIn(refresh_token="old"))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "refresh token expired"
    assert cur.statements("delete from refresh_tokens where id = %s")[0][1] == ("rt-1",)
    assert conn.commits == 1


def test_valid_refresh_token_issues_access_token(monkeypatch):
    row = {
        "token_id": "rt-1",
        "expires_at": datetime.now(timezone.utc) + timedelta(days=1),
        "id": "u-1",
        "tenant_id": "t-1",
        "role": "manager",
        "email": "m@x.io",
        "is_active": True,
    }
    monkeypatch.setattr(auth_router, "get_conn", lambda: FakeConn(_refresh_cursor([row])))

    res = refresh(RefreshIn(refresh_token="good"))

    claims = decode_access_token(res["access_token"])
    assert claims["sub"] == "u-1"
    assert claims["role"] == "manager"
    assert res["token_type"] == "bearer"


def test_refresh_token_of_deactivated_user_is_401(monkeypatch):
    row = {
        "token_id": "rt-1",
        "expires_at": datetime.now(timezone.utc) + timedelta(days=1),
        "id": "u-1",
        "tenant_id": "t-1",
        "role": "manager",
        "email": "m@x.io",
        "is_active": False,
    }
    monkeypatch.setattr(auth_router, "get_conn", lambda: FakeConn(_refresh_cursor([row])))
    with pytest.raises(HTTPException) as exc_info:
        refresh(RefreshIn(refresh_token="good"))
    assert exc_info.value.status_code == 401
