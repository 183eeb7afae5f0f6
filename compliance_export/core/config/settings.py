# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the
compliance export service. Settings are loaded from environment variables
with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from compliance_export.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.export.max_retries)
    2
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_grade_bands() -> list[tuple[float, str]]:
    return [(80.0, "A"), (60.0, "B"), (50.0, "C"), (40.0, "D")]


class ExportSettings(BaseSettings):
    """Compliance export pipeline configuration.

    Attributes:
        fetch_timeout: Timeout in seconds for a single source fetch attempt.
        max_retries: Additional attempts after a failed source fetch.
        retry_backoff: Fixed delay in seconds between fetch attempts.
        job_timeout: Overall time budget in seconds for one export job.
        job_retention: Seconds a finished job stays available for status
            and re-download before it is forgotten.
        schema_version: Version of the generated EMIS document schema.
        export_type: Export type recorded in the export history.
        grade_bands: Letter grade bands as (minimum percentage, letter),
            evaluated from the highest minimum down.
        fallback_grade: Letter used below the lowest band.
        grading_scale_file: Optional YAML file overriding grade_bands.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXPORT_",
        extra="ignore",
    )

    fetch_timeout: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_backoff: float = Field(default=0.5, ge=0)
    job_timeout: float = Field(default=300.0, gt=0)
    job_retention: float = Field(default=3600.0, gt=0)
    schema_version: str = "1.0"
    export_type: str = "EMIS"
    grade_bands: list[tuple[float, str]] = Field(default_factory=_default_grade_bands)
    fallback_grade: str = "F"
    grading_scale_file: Path | None = None


class RecordStoreSettings(BaseSettings):
    """School record store configuration.

    The record store is the school administration REST API that owns
    students, staff, classes, subjects, attendance and grades.

    Attributes:
        backend: Which record store implementation to construct.
        base_url: Base URL of the record store API.
        api_key: API key sent with every request.
        timeout: HTTP request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECORD_STORE_",
        extra="ignore",
    )

    backend: Literal["http", "memory"] = "http"
    base_url: str = "http://localhost:8080/api"
    api_key: SecretStr = SecretStr("")
    timeout: float = 30.0


class HistoryDatabaseSettings(BaseSettings):
    """Export history database configuration.

    Attributes:
        backend: Where export history entries are stored.
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        echo: Log every SQL statement.
    """

    model_config = SettingsConfigDict(
        env_prefix="HISTORY_DB_",
        extra="ignore",
    )

    backend: Literal["sql", "http", "memory"] = "sql"
    user: str = "edusynapse"
    password: SecretStr = SecretStr("edusynapse_history_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "edusynapse_compliance"
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Host to bind to.
        port: Port to listen on.
        title: OpenAPI title.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 34100
    title: str = "EduSynapse Compliance Export"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        export: Export pipeline settings.
        record_store: Record store settings.
        history_db: Export history database settings.
        api: API server settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    export: ExportSettings = Field(default_factory=ExportSettings)
    record_store: RecordStoreSettings = Field(default_factory=RecordStoreSettings)
    history_db: HistoryDatabaseSettings = Field(default_factory=HistoryDatabaseSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production against the in-memory stores.
        """
        if self.environment == "production":
            if self.record_store.backend == "memory":
                raise ValueError(
                    "The in-memory record store cannot be used in production. "
                    "Set RECORD_STORE_BACKEND=http."
                )
            if self.history_db.backend == "memory":
                raise ValueError(
                    "Export history must be durable in production. "
                    "Set HISTORY_DB_BACKEND to sql or http."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
