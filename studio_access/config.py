"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PAYMENT_PROVIDERS = ("paystack", "stripe")
STORAGE_BACKENDS = ("local", "s3")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    auto_migrate: bool = False  # Apply pending Alembic migrations at startup

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Studio Access API"
    api_version: str = "0.1.0"
    api_description: str = "Content access control and paid media delivery for the studio"
    public_base_url: str = "http://localhost:8000"

    # Principal identity - JWTs issued by the external auth layer
    principal_jwt_secret: str = ""
    principal_jwt_algorithm: str = "HS256"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "studio-access-api"

    # Payments
    payment_provider: str = "paystack"  # paystack or stripe
    payment_currency: str = "NGN"
    payment_reference_prefix: str = "SETMEDIA"
    payment_callback_url: str = ""  # Defaults to {public_base_url}/payment/verify

    # Payment Provider - Paystack
    paystack_secret_key: str = ""
    paystack_public_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 15.0

    # Payment Provider - Stripe
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""

    # Storage
    storage_backend: str = "local"  # local or s3
    local_storage_root: str = "storage"
    local_storage_bucket: str = "media"
    url_signing_secret: str = ""
    s3_bucket: str = ""
    s3_region: str | None = None
    s3_endpoint_url: str | None = None  # S3-compatible stores (R2, MinIO)
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    # Delivery
    download_url_ttl_seconds: int = 3600

    # Recycle bin retention
    recycle_bin_retention_days: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.payment_provider not in PAYMENT_PROVIDERS:
            errors.append(
                f"PAYMENT_PROVIDER must be one of {', '.join(PAYMENT_PROVIDERS)}, "
                f"got: {self.payment_provider}"
            )
        elif self.payment_provider == "paystack" and not self.paystack_secret_key:
            errors.append("PAYSTACK_SECRET_KEY is required for the paystack provider")
        elif self.payment_provider == "stripe":
            if not self.stripe_api_key:
                errors.append("STRIPE_API_KEY is required for the stripe provider")
            if not self.stripe_webhook_secret:
                errors.append("STRIPE_WEBHOOK_SECRET is required for the stripe provider")

        if self.storage_backend not in STORAGE_BACKENDS:
            errors.append(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got: {self.storage_backend}"
            )
        elif self.storage_backend == "local" and not self.url_signing_secret:
            errors.append("URL_SIGNING_SECRET is required for local storage")
        elif self.storage_backend == "s3" and not self.s3_bucket:
            errors.append("S3_BUCKET is required for s3 storage")

        if self.download_url_ttl_seconds <= 0:
            errors.append("DOWNLOAD_URL_TTL_SECONDS must be positive")

        # If we have errors, fail immediately with clear messaging
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
    def resolved_callback_url(self) -> str:
        """Callback the provider redirects to after checkout."""
        if self.payment_callback_url:
            return self.payment_callback_url
        return f"{self.public_base_url.rstrip('/')}/payment/verify"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
