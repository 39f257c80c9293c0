"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

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
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Video Production Orchestrator"
    api_version: str = "0.1.0"
    api_description: str = "Lease, credit and lifecycle orchestration for video production"
    public_base_url: str = "http://localhost:8000"  # Used to build worker callback URLs

    # Identity provider - bearer tokens are HS256 JWTs signed with this secret
    auth_jwt_secret: str = ""
    auth_jwt_audience: str | None = None

    # Generation worker
    worker_webhook_url: str = ""  # New video jobs
    worker_revision_webhook_url: str = ""  # Revision jobs (falls back to worker_webhook_url)
    worker_callback_secret: str = ""  # Shared secret expected in X-Webhook-Secret
    worker_timeout_seconds: float = 30.0

    # Production lifecycle
    lease_ttl_minutes: int = 20
    production_timeout_minutes: int = 15
    estimated_minutes_new_video: int = 12
    estimated_minutes_revision: int = 5
    stuck_video_threshold_minutes: int = 20
    new_video_credits: Decimal = Decimal("10")
    revision_credits: Decimal = Decimal("2.5")

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "video-production-orchestrator"

    # Payment Provider - Stripe
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""

    # Price id -> plan mapping (price ids differ between test and live mode)
    stripe_price_starter: str = ""
    stripe_price_creator: str = ""
    stripe_price_pro: str = ""
    stripe_price_elite: str = ""
    credit_pack_credits: Decimal = Decimal("10")

    # Monthly allotment reset window used by on-demand sync
    credit_reset_interval_days: int = 30

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
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.lease_ttl_minutes <= self.production_timeout_minutes:
            errors.append(
                "LEASE_TTL_MINUTES must be greater than PRODUCTION_TIMEOUT_MINUTES "
                f"(got {self.lease_ttl_minutes} <= {self.production_timeout_minutes})"
            )

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
    def revision_webhook_url(self) -> str:
        return self.worker_revision_webhook_url or self.worker_webhook_url

    @property
    def generation_callback_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/v1/webhooks/generation"


# Global settings instance - validates at import time
settings = Settings()
