"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
Payment settings are optional: their presence only gates whether
checkout and webhook endpoints are enabled.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Vibe Store Entitlements API"
    api_version: str = "0.1.0"
    api_description: str = "Checkout, webhook ingestion and entitlements for Vibe Store"

    # User authentication - Supabase issues HS256 JWTs signed with the project secret
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vibestore-entitlements"
    deployment_environment: str = "production"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_publishable_key: str = ""  # pk_test_... or pk_live_...
    stripe_webhook_tolerance_seconds: int = 300

    # Subscription plan price references
    stripe_price_pro: str = "price_pro_monthly"
    stripe_price_enterprise: str = "price_enterprise_monthly"

    # Sandbox processor - simulated sessions, never used implicitly
    payments_sandbox_mode: bool = False

    # Checkout / entitlement behaviour
    checkout_timeout_seconds: float = 15.0
    subscription_period_days: int = 30
    developer_revenue_share: float = 0.7
    default_currency: str = "USD"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a usable database URL.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not 0 < self.developer_revenue_share <= 1:
            errors.append(
                f"DEVELOPER_REVENUE_SHARE must be in (0, 1], got {self.developer_revenue_share}"
            )

        if self.checkout_timeout_seconds <= 0:
            errors.append("CHECKOUT_TIMEOUT_SECONDS must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def payments_enabled(self) -> bool:
        """Payments work with real Stripe credentials or in explicit sandbox mode."""
        if self.payments_sandbox_mode:
            return bool(self.stripe_webhook_secret)
        return bool(self.stripe_api_key and self.stripe_webhook_secret)

    def payment_config_warnings(self) -> list[str]:
        """List missing payment settings, for operators and the config endpoint."""
        warnings = []
        if not self.stripe_publishable_key:
            warnings.append("Missing STRIPE_PUBLISHABLE_KEY")
        if not self.stripe_api_key and not self.payments_sandbox_mode:
            warnings.append("Missing STRIPE_API_KEY (checkout sessions)")
        if not self.stripe_webhook_secret:
            warnings.append("Missing STRIPE_WEBHOOK_SECRET (webhooks)")
        return warnings


# Global settings instance - validates at import time
settings = Settings()
