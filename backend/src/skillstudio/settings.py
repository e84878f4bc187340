"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "skillstudio"
    env: str = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"
    site_url: str = Field(
        default="http://localhost:3000",
        description="Public origin used for referral links and Connect redirects",
    )

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_expire_hours: int = 2

    # Database
    database_url: str = "sqlite:///./skillstudio.db"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    # Outbound notification channel (marketing automation webhook)
    ambassador_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    # Referral attribution marker
    referral_cookie_name: str = "ref_code"
    referral_cookie_max_age_days: int = 30

    # Ambassador onboarding
    min_social_proof_links: int = 3
    enable_debug_routes: bool = False

    # Commissions (minor currency units)
    trial_commission_cents: int = 50
    recurring_commission_cents: int = 1000
    trial_amount_cents: int = 100
    pro_min_amount_cents: int = 2900
    recurring_min_invoice_cents: int = 500
    payment_failure_downgrade_attempts: int = 2

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def debug_routes_enabled(self) -> bool:
        """Debug routes are never mounted in production, whatever the flag says."""
        return self.enable_debug_routes and not self.is_production


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.is_production:
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
