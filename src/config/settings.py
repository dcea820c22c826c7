"""
EV Charging Warehouse
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from datetime import date
from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, model_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="ev_warehouse", alias="database", description="Database name")
    user: str = Field(default="ev_etl", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    url: Optional[str] = Field(default=None, description="Full SQLAlchemy URL (overrides host/port)")
    pool_size: int = Field(default=20, description="Connection pool size")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL - uses url if set, otherwise builds one for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class LoaderSettings(BaseSettings):
    """Load engine behaviour: locking, retries, worker pool and quarantine"""

    model_config = SettingsConfigDict(env_prefix="LOADER_")

    lock_timeout_seconds: float = Field(default=5.0, description="Per-key lock acquisition timeout")
    max_workers: int = Field(default=8, description="Concurrent events in a batch load")
    max_retries: int = Field(default=3, description="Retries for retryable load errors")
    retry_backoff_seconds: float = Field(default=0.2, description="Initial retry backoff, doubled per attempt")
    quarantine_enabled: bool = Field(default=True, description="Record rejected events in etl_quarantine")
    dead_letter_path: str = Field(default="./data/dead_letter", description="Dead-letter directory for batch loads")

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Worker pool needs at least one slot"""
        if v < 1:
            raise ValueError("max_workers must be >= 1")
        return v


class CalendarSettings(BaseSettings):
    """Pre-generated time dimension range"""

    model_config = SettingsConfigDict(env_prefix="CALENDAR_")

    start_date: date = Field(default=date(2024, 1, 1), description="First calendar date")
    end_date: date = Field(default=date(2025, 12, 31), description="Last calendar date")
    seed_effective_date: date = Field(
        default=date(2024, 1, 1),
        description="Effective date of seeded dimension versions",
    )

    @model_validator(mode="after")
    def validate_range(self) -> "CalendarSettings":
        """Calendar range must not be inverted"""
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="ev-charging-warehouse", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    loader: LoaderSettings = Field(default_factory=LoaderSettings)
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
