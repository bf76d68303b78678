# backend/bookbeauty/core/config.py
from decimal import Decimal
from functools import lru_cache
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_HOLD_PERCENT,
    DEFAULT_LATE_WINDOW_HOURS,
    DEFAULT_MOLLIE_SCOPES,
    DEFAULT_PLATFORM_FEE_PERCENT,
)

_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

load_dotenv(_BACKEND_ROOT / ".env", override=False)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")

    # Database
    database_url: str = Field(
        default=f"sqlite+pysqlite:///{_BACKEND_ROOT / 'bookbeauty.db'}",
        description="SQLAlchemy database URL",
    )

    # Public app
    app_base_url: str = Field(
        default="http://localhost:8081",
        description="Base URL of the customer app; used for redirect and result pages",
    )
    booking_timezone: str = Field(
        default="Europe/Amsterdam",
        description="Timezone in which salon opening hours are expressed",
    )

    # Mollie platform account
    mollie_api_key_platform: SecretStr = Field(
        default=SecretStr(""),
        description="Platform-level Mollie API key (test_ or live_)",
    )
    mollie_mode: str = Field(
        default="test",
        description="'test' uses the platform key for payments; 'live' uses the salon's connected account",
    )
    mollie_webhook_url: str = Field(
        default="",
        description="Public URL Mollie calls when a payment changes",
    )
    mollie_api_base_url: str = Field(default="https://api.mollie.com/v2")

    # Mollie Connect (OAuth)
    mollie_oauth_client_id: str = Field(default="", description="Mollie Connect app client id")
    mollie_oauth_client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Mollie Connect app client secret",
    )
    mollie_oauth_redirect_uri: str = Field(
        default="",
        description="OAuth callback URL registered with Mollie",
    )
    mollie_oauth_scopes: str = Field(default=DEFAULT_MOLLIE_SCOPES)
    mollie_token_encryption_key: SecretStr = Field(
        default=SecretStr(""),
        description="32-byte key (base64, hex or raw) used to encrypt connected-account tokens",
    )
    oauth_state_ttl_minutes: int = Field(default=15, ge=1)
    token_refresh_skew_seconds: int = Field(default=60, ge=0)

    # Money and policy
    platform_fee_percent: Decimal = Field(
        default=DEFAULT_PLATFORM_FEE_PERCENT,
        ge=0,
        le=100,
        description="Platform commission on every booking payment",
    )
    default_hold_percent: Decimal = Field(default=DEFAULT_HOLD_PERCENT, ge=0, le=100)
    default_platform_fee_percent_rule: Decimal = Field(
        default=DEFAULT_PLATFORM_FEE_PERCENT, ge=0, le=100
    )
    default_late_window_hours: int = Field(default=DEFAULT_LATE_WINDOW_HOURS, ge=0)
    check_in_code_ttl_minutes: int = Field(default=15, ge=1)

    # Identity
    firebase_project_id: str = Field(default="", description="Firebase project that issues ID tokens")
    firebase_jwks_url: str = Field(
        default=(
            "https://www.googleapis.com/service_accounts/v1/jwk/"
            "securetoken@system.gserviceaccount.com"
        ),
    )
    admin_role: str = Field(default="admin")

    # Comma-separated list of browser origins allowed to call the API
    cors_allowed_origins: str = Field(default="http://localhost:8081")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("mollie_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> str:
        normalized = str(value or "").strip().lower()
        return "live" if normalized == "live" else "test"

    @field_validator("app_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> str:
        return str(value or "").strip().rstrip("/")

    @property
    def is_test_mode(self) -> bool:
        return self.mollie_mode != "live"

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def oauth_configured(self) -> bool:
        return bool(
            self.mollie_oauth_client_id
            and self.mollie_oauth_client_secret.get_secret_value()
            and self.mollie_oauth_redirect_uri
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings instance (injected into services)."""
    return Settings()


settings = get_settings()
logger.info(
    "[CONFIG] Mollie configuration: mode=%s oauth_configured=%s",
    settings.mollie_mode,
    settings.oauth_configured,
)
