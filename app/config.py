"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.
"""

from functools import lru_cache
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="PostgreSQL connection URL",
    )

    # Authentication
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="API key for admin endpoints",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs (disable for local development)",
    )

    # Snapshot source
    SNAPSHOT_SOURCE: str = Field(
        default="http",
        description="Snapshot source provider: http, memory",
    )
    SNAPSHOT_SOURCE_URL: str | None = Field(
        default=None,
        description="Base URL of the backup service exposing snapshot metadata",
    )
    SNAPSHOT_SOURCE_API_KEY: str | None = Field(
        default=None,
        description="API key sent to the snapshot source as X-API-Key",
    )
    SNAPSHOT_SOURCE_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Per-request timeout for snapshot source calls",
    )
    SNAPSHOT_SOURCE_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Attempts when listing candidate snapshots",
    )

    # Lifecycle enforcement
    DEFAULT_ENFORCEMENT_MODE: str = Field(
        default="must_delete_only",
        description="Enforcement mode for new policies: must_delete_only, include_can_delete",
    )
    DELETION_EVENTS_DEFAULT_LIMIT: int = Field(
        default=100,
        description="Default page size for deletion event listings",
    )
    DELETION_EVENTS_MAX_LIMIT: int = Field(
        default=1000,
        description="Upper bound for deletion event listings",
    )
    ENFORCEMENT_LEASE_TIMEOUT_SECONDS: int = Field(
        default=6 * 3600,
        description="Age after which an enforcement claim left by a crashed process may be taken over",
    )

    ENFORCEMENT_MODES: ClassVar[set[str]] = {"must_delete_only", "include_can_delete"}
    SNAPSHOT_SOURCES: ClassVar[set[str]] = {"http", "memory"}

    @field_validator("DEFAULT_ENFORCEMENT_MODE")
    @classmethod
    def check_enforcement_mode(cls, v: str) -> str:
        if v not in cls.ENFORCEMENT_MODES:
            raise ValueError(f"DEFAULT_ENFORCEMENT_MODE must be one of {sorted(cls.ENFORCEMENT_MODES)}")
        return v

    @field_validator("SNAPSHOT_SOURCE")
    @classmethod
    def check_snapshot_source(cls, v: str) -> str:
        v = v.lower()
        if v not in cls.SNAPSHOT_SOURCES:
            raise ValueError(f"SNAPSHOT_SOURCE must be one of {sorted(cls.SNAPSHOT_SOURCES)}")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Railway provides postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
