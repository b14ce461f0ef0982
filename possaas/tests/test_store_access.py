import pytest
from fastapi import HTTPException

from possaas.app import deps
from possaas.app.deps import assert_store_access, get_store_id
from possaas.tests.fakes import FakeConn, FakeCursor

CASHIER = {"user_id": "u-2", "tenant_id": "t-1", "store_id": "s-1", "role": "cashier", "email": "c@x.io"}
OWNER = {"user_id": "u-1", "tenant_id": "t-1", "store_id": None, "role": "owner", "email": "o@x.io"}
ADMIN = {"user_id": "u-0", "tenant_id": None, "store_id": None, "role": "administrator", "email": "a@x.io"}


def _cursor(is_active=True, tenant_id="t-1"):
    return FakeCursor([("from stores where id = %s", [{"id": "s-1", "tenant_id": tenant_id, "is_active": is_active}])])


def test_assigned_cashier_reaches_active_store():
    assert assert_store_access(_cursor(), CASHIER, "s-1")["id"] == "s-1"


def test_cashier_cannot_reach_another_store():
    with pytest.raises(HTTPException) as exc_info:
        assert_store_access(_cursor(), CASHIER, "s-2")
    assert exc_info.value.status_code == 403


def test_other_tenant_is_forbidden():
    with pytest.raises(HTTPException) as exc_info:
        assert_store_access(_cursor(tenant_id="t-9"), OWNER, "s-1")
    assert exc_info.value.status_code == 403


@pytest.mark.parametrize("user", [CASHIER, OWNER])
def test_deactivated_store_is_gone_for_tenant_users(user):
    with pytest.raises(HTTPException) as exc_info:
        assert_store_access(_cursor(is_active=False), user, "s-1")
    assert exc_info.value.status_code == 404


def test_owner_reaches_deactivated_store_only_for_reactivation():
    assert assert_store_access(_cursor(is_active=False), OWNER, "s-1", include_inactive=True)["id"] == "s-1"
    with pytest.raises(HTTPException):
        assert_store_access(_cursor(is_active=False), CASHIER, "s-1", include_inactive=True)


def test_administrator_reaches_deactivated_store():
    assert assert_store_access(_cursor(is_active=False), ADMIN, "s-1")["is_active"] is False


def test_store_header_for_deactivated_store_blocks_sales(monkeypatch):
    monkeypatch.setattr(deps, "get_conn", lambda: FakeConn(_cursor(is_active=False)))
    with pytest.raises(HTTPException) as exc_info:
        get_store_id("s-1", CASHIER)
    assert exc_info.value.status_code == 404


def test_store_header_falls_back_to_assigned_store(monkeypatch):
    monkeypatch.setattr(deps, "get_conn", lambda: FakeConn(_cursor()))
    assert get_store_id(None, CASHIER) == "s-1"
