"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
Store credentials are turned into explicit config objects once, at process
start, and injected into the validators (see services/validators.py).
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

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Receipt Guard API"
    api_version: str = "0.1.0"
    api_description: str = "In-app purchase receipt validation and entitlement grants"

    # Caller authentication - comma-separated ID token audiences
    # (Google OAuth client IDs and/or Firebase project IDs)
    auth_audiences: str = ""

    @property
    def valid_auth_audiences(self) -> list[str]:
        """Get de-duplicated list of accepted ID token audiences."""
        audiences: list[str] = []
        for aud in self.auth_audiences.split(","):
            aud = aud.strip()
            if aud and aud not in audiences:
                audiences.append(aud)
        return audiences

    # Apple App Store (legacy verifyReceipt API)
    apple_shared_secret: str = ""  # App-Specific Shared Secret from App Store Connect
    apple_production_url: str = "https://buy.itunes.apple.com/verifyReceipt"
    apple_sandbox_url: str = "https://sandbox.itunes.apple.com/verifyReceipt"
    apple_timeout_seconds: float = 30.0

    # Google Play Developer API
    # Path to service account JSON, raw JSON, or base64 JSON. Empty = ADC.
    google_service_account: str = ""
    android_package_name: str = ""  # e.g., "com.sortbliss.app"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "receipt-guard-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        Store credentials are checked when the validators are built, so a
        process can still run migrations or health checks without them.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

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


# Global settings instance - validates at import time
settings = Settings()
