from __future__ import annotations

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # API configuration
    API_V1_STR: str = "/api"
    PROJECT_NAME: str = "Marketplace Subscriptions"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # Access tokens are issued by the marketplace auth service; we only verify them
    SECRET_KEY: str = os.getenv("SECRET_KEY", "development_secret_key")
    ALGORITHM: str = "HS256"
    TOKEN_ISSUER: str = os.getenv("TOKEN_ISSUER", "marketplace-backend")
    TOKEN_AUDIENCE: str = os.getenv("TOKEN_AUDIENCE", "marketplace-users")
    ADMIN_ROLES: list[str] = ["admin", "superadmin"]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_PATH: Path = Path("logs")
    LOG_BACKUP_COUNT: int = 30  # Keep 30 days of logs

    # MongoDB configuration
    MONGODB_URL: str = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "marketplace")

    # Subscription lifecycle
    DEFAULT_SUBSCRIPTION_DAYS: int = int(os.getenv("DEFAULT_SUBSCRIPTION_DAYS", "30"))
    LIFETIME_PLAN_MONTHS: int = 1200
    SUPERSEDE_ACTIVE_ON_ACTIVATION: bool = os.getenv(
        "SUPERSEDE_ACTIVE_ON_ACTIVATION", "true"
    ).lower() in ("true", "1", "yes")

    # Entitlements
    FREE_TIER_PROPERTY_LIMIT: int = int(os.getenv("FREE_TIER_PROPERTY_LIMIT", "5"))

    # Subscription scheduler configuration
    SUBSCRIPTION_SCHEDULER_ENABLED: bool = os.getenv(
        "SUBSCRIPTION_SCHEDULER_ENABLED", "true"
    ).lower() in ("true", "1", "yes")
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = int(
        os.getenv("EXPIRY_SWEEP_INTERVAL_MINUTES", "15")
    )
    EXPIRING_SOON_DAYS: int = int(os.getenv("EXPIRING_SOON_DAYS", "7"))
    EXPIRING_SOON_SCHEDULE_HOUR: int = int(
        os.getenv("EXPIRING_SOON_SCHEDULE_HOUR", "9")
    )
    RECONCILIATION_SCHEDULE_HOUR: int = int(
        os.getenv("RECONCILIATION_SCHEDULE_HOUR", "2")
    )
    RECONCILIATION_SCHEDULE_MINUTE: int = int(
        os.getenv("RECONCILIATION_SCHEDULE_MINUTE", "30")
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list | str):
            return v
        raise ValueError(v)

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore"  # Ignore extra fields from .env file


# Create settings instance
settings = Settings()
