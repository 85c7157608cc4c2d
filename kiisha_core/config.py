"""
Unified configuration for the Kiisha portal access-control core.

This module provides a single Settings class that consolidates all
environment variables used by the tenant resolver, the scope resolvers,
the portal token service and the rate limiter.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the portal services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "kiisha-portal"
    ENVIRONMENT: str = "development"  # "development" or "production"
    LOG_LEVEL: str = "INFO"

    # Grant store
    GRANT_STORE_BACKEND: str = "memory"  # "memory" or "postgres"
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=kiisha user=postgres password=postgres"

    # Portal tokens
    JWT_SECRET: str = ""
    PORTAL_TOKEN_TTL_DAYS: int = 7
    PORTAL_COOKIE_NAME: str = "portal_token"

    # Tenancy
    KIISHA_BASE_HOST: str = "kiisha.io"
    DEV_HOST_MARKERS: list[str] = ["localhost", "127.0.0.1", ".manus.computer"]

    # Rate limiting
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 60.0
    RATE_LIMIT_API: str = "100/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # App host/port
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def url_scheme(self) -> str:
        """Protocol used when building tenant and lobby URLs."""
        return "https" if self.is_production else "http"


# Global settings instance
settings = Settings()  # type: ignore
