import pyotp
import pytest
from cryptography.fernet import Fernet
from fastapi import HTTPException

from possaas.app.mfa import TotpVault

KEY = Fernet.generate_key().decode("utf-8")


def test_enrollment_keeps_secret_encrypted_and_names_issuer():
    vault = TotpVault(key=KEY, issuer="Kopi POS")
    enrollment = vault.enroll("owner@x.io")
    assert enrollment.secret not in enrollment.secret_enc
    assert enrollment.otpauth_url.startswith("otpauth://totp/")
    assert "issuer=Kopi%20POS" in enrollment.otpauth_url
    code = pyotp.TOTP(enrollment.secret).now()
    assert vault.check(enrollment.secret_enc, code) is True


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456", None])
def test_malformed_codes_fail_before_decrypting(code):
    assert TotpVault(key=KEY).check("not-a-token", code) is False


def test_wrong_code_is_rejected():
    vault = TotpVault(key=KEY)
    enrollment = vault.enroll("a@x.io")
    good = pyotp.TOTP(enrollment.secret).now()
    bad = str((int(good) + 500000) % 1000000).zfill(6)
    assert vault.check(enrollment.secret_enc, bad) is False


def test_unconfigured_key_is_503():
    with pytest.raises(HTTPException) as exc_info:
        TotpVault(key="").enroll("a@x.io")
    assert exc_info.value.status_code == 503


def test_secret_from_another_key_is_500():
    enrollment = TotpVault(key=KEY).enroll("a@x.io")
    other = TotpVault(key=Fernet.generate_key().decode("utf-8"))
    with pytest.raises(HTTPException) as exc_info:
        other.check(enrollment.secret_enc, "123456")
    assert exc_info.value.status_code == 500
