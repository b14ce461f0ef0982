"""
TOTP two-factor auth for staff accounts.

A user's secret is only ever persisted encrypted (users.mfa_pending_secret_enc while
enrolling, users.mfa_secret_enc once confirmed); codes are checked against the
decrypted secret with one 30s step of drift either way.
"""
from dataclasses import dataclass
from typing import Optional

import pyotp
from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException

from .config import settings

CODE_DIGITS = 6


@dataclass(frozen=True)
class Enrollment:
    secret: str
    secret_enc: str
    otpauth_url: str


class TotpVault:
    def __init__(self, key: Optional[str] = None, issuer: Optional[str] = None):
        self.key = settings.mfa_encryption_key if key is None else key
        self.issuer = issuer or settings.mfa_issuer

    def _fernet(self) -> Fernet:
        if not self.key:
            raise HTTPException(status_code=503, detail="two-factor authentication is not configured")
        try:
            return Fernet(self.key.encode("utf-8"))
        except ValueError:
            raise HTTPException(status_code=500, detail="invalid MFA_ENCRYPTION_KEY") from None

    def enroll(self, email: str) -> Enrollment:
        secret = pyotp.random_base32(length=32)
        secret_enc = self._fernet().encrypt(secret.encode("utf-8")).decode("utf-8")
        url = pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=self.issuer)
        return Enrollment(secret=secret, secret_enc=secret_enc, otpauth_url=url)

    def check(self, secret_enc: str, code: str) -> bool:
        c = (code or "").strip().replace(" ", "")
        if not c.isdigit() or len(c) != CODE_DIGITS:
            return False
        try:
            secret = self._fernet().decrypt(secret_enc.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise HTTPException(status_code=500, detail="stored MFA secret cannot be decrypted") from None
        return bool(pyotp.TOTP(secret).verify(c, valid_window=1))


def get_vault() -> TotpVault:
    return TotpVault()
