"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.
"""

import json
import logging
from functools import lru_cache
from typing import Any, ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="Relational store URL (PostgreSQL in production, SQLite for local runs)",
    )
    STORE_TRANSACTION_TIMEOUT_MS: int = Field(
        default=30000,
        ge=0,
        description="Per-transaction statement deadline in milliseconds (0 disables)",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level: DEBUG, INFO, WARNING, ERROR",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs (False for human-readable output)",
    )

    # Archive storage
    ARCHIVE_PROVIDER: str = Field(
        default="local",
        description="Archive sink backend: local, s3, none",
    )
    LOCAL_ARCHIVE_PATH: str = Field(
        default="./archive",
        description="Base directory for the local archive provider",
    )
    S3_BUCKET: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None

    # Retention
    RETENTION_SWEEP_INTERVAL_HOURS: int = Field(
        default=24,
        ge=1,
        description="Hours between scheduled sweeps when running the scheduler loop",
    )
    RETENTION_POLICY_OVERRIDES: str = Field(
        default="",
        description='JSON object of per-entity policy overrides, e.g. {"experiences": {"grace_period_days": 14}}',
    )

    LOG_LEVELS: ClassVar[set[str]] = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    ARCHIVE_PROVIDERS: ClassVar[set[str]] = {"local", "s3", "none"}

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in cls.LOG_LEVELS:
            raise ValueError(f"Unknown log level '{v}'. Use one of: {', '.join(sorted(cls.LOG_LEVELS))}")
        return level

    @field_validator("ARCHIVE_PROVIDER")
    @classmethod
    def check_archive_provider(cls, v: str) -> str:
        name = v.lower().strip()
        if name not in cls.ARCHIVE_PROVIDERS:
            raise ValueError(f"Unknown archive provider '{v}'. Available: local, s3, none")
        return name

    @field_validator("RETENTION_POLICY_OVERRIDES")
    @classmethod
    def check_policy_overrides(cls, v: str) -> str:
        """Reject overrides that are not a JSON object; field-level checks happen in policy_service."""
        if not v.strip():
            return ""
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"RETENTION_POLICY_OVERRIDES is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("RETENTION_POLICY_OVERRIDES must be a JSON object")
        return v

    @property
    def policy_overrides(self) -> dict[str, dict[str, Any]]:
        if not self.RETENTION_POLICY_OVERRIDES:
            return {}
        return json.loads(self.RETENTION_POLICY_OVERRIDES)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    settings = Settings()
    logging.getLogger(__name__).debug(f"Settings loaded for environment: {settings.ENVIRONMENT}")
    return settings
