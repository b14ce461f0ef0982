import os
from decimal import Decimal
from typing import List

DEV_ENVS = {"local", "dev", "development", "test"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _truthy(raw: str) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = (os.getenv("APP_ENV", "local") or "local").strip().lower()
        self.db_url = os.getenv("DATABASE_URL", "postgresql://localhost/possaas")
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:5173", "http://localhost:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.frontend_url = (os.getenv("FRONTEND_URL") or "http://localhost:5173").rstrip("/")

        # Tokens. Development falls back to fixed secrets; check_secrets() rejects them elsewhere.
        self.jwt_secret = os.getenv("JWT_SECRET", "dev-access-secret-change-me")
        self.jwt_refresh_secret = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.access_token_minutes = _env_int("ACCESS_TOKEN_MINUTES", 15)
        self.refresh_token_days = _env_int("REFRESH_TOKEN_DAYS", 7)

        # Two-factor auth. TOTP secrets are stored Fernet-encrypted with this key.
        self.mfa_encryption_key = (os.getenv("MFA_ENCRYPTION_KEY") or "").strip()
        self.mfa_issuer = (os.getenv("MFA_ISSUER") or "POS SaaS").strip()

        # Sales and tenancy.
        self.tax_rate = Decimal(os.getenv("TAX_RATE", "0.085"))
        self.trial_days = _env_int("TRIAL_DAYS", 30)
        self.trial_max_stores = _env_int("TRIAL_MAX_STORES", 1)
        self.trial_max_users = _env_int("TRIAL_MAX_USERS", 3)
        self.default_currency = (os.getenv("DEFAULT_CURRENCY") or "IDR").strip().upper()
        self.reminder_days = _env_int("REMINDER_DAYS", 3)

        # Stripe.
        self.stripe_secret_key = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
        self.stripe_webhook_secret = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()
        self.stripe_allow_unverified = _truthy(os.getenv("STRIPE_WEBHOOK_ALLOW_UNVERIFIED", ""))

        # Messaging providers.
        self.whatsapp_access_token = (os.getenv("WHATSAPP_ACCESS_TOKEN") or "").strip()
        self.whatsapp_phone_number_id = (os.getenv("WHATSAPP_PHONE_NUMBER_ID") or "").strip()
        self.whatsapp_verify_token = (os.getenv("WHATSAPP_VERIFY_TOKEN") or "").strip()
        self.whatsapp_app_secret = (os.getenv("WHATSAPP_APP_SECRET") or "").strip()
        self.whatsapp_api_version = (os.getenv("WHATSAPP_API_VERSION") or "v18.0").strip()
        self.telegram_bot_token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
        self.telegram_webhook_secret = (os.getenv("TELEGRAM_WEBHOOK_SECRET") or "").strip()

        # Email.
        self.smtp_host = (os.getenv("SMTP_HOST") or "").strip()
        self.smtp_port = _env_int("SMTP_PORT", 587)
        self.smtp_user = (os.getenv("SMTP_USER") or "").strip()
        self.smtp_password = os.getenv("SMTP_PASSWORD") or ""
        self.smtp_starttls = not (os.getenv("SMTP_STARTTLS", "1").strip().lower() in {"0", "false", "no"})
        self.email_from = (os.getenv("EMAIL_FROM") or "noreply@possaas.local").strip()

    @property
    def is_dev(self) -> bool:
        return self.env in DEV_ENVS

    def check_secrets(self) -> None:
        if self.is_dev:
            return
        for name, value in (("JWT_SECRET", self.jwt_secret), ("JWT_REFRESH_SECRET", self.jwt_refresh_secret)):
            if value.startswith("dev-") or len(value) < 32:
                raise RuntimeError(f"{name} must be set to a random value of at least 32 characters")


settings = Settings()
