"""
Settings Module for Pulse Engine

Configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Each concern gets its own settings section with its own env prefix.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

from pydantic import (
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from exceptions.base import ConfigurationError


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


class QueueBackend(str, Enum):
    """Supported check queue backends."""
    MEMORY = "memory"
    REDIS = "redis"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    Supports PostgreSQL (production) and SQLite (development, tests).
    An explicit ``dsn`` wins over the individual connection fields.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    type: DatabaseType = Field(
        default=DatabaseType.SQLITE,
        description="Database type: postgresql or sqlite"
    )
    dsn: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL, overrides the fields below"
    )

    host: str = Field(default="localhost", description="Database host address")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port number")
    name: str = Field(
        default="pulse_engine",
        min_length=1,
        max_length=64,
        description="Database name"
    )
    user: str = Field(default="postgres", min_length=1, max_length=64)
    password: SecretStr = Field(default=SecretStr(""), description="Database password")

    sqlite_path: Path = Field(
        default=Path("data/pulse_engine.db"),
        description="Path to SQLite database file"
    )

    # Connection pool settings
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1, le=300)
    pool_recycle: int = Field(default=1800, ge=60, le=7200)
    pool_pre_ping: bool = Field(default=True)

    echo: bool = Field(default=False, description="Echo SQL queries (debug mode)")
    create_tables: bool = Field(
        default=True,
        description="Create missing tables on startup (development only)"
    )

    @property
    def url(self) -> str:
        """Generate database URL based on configuration."""
        if self.dsn:
            return self.dsn

        if self.type == DatabaseType.SQLITE:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{self.sqlite_path}"

        password = self.password.get_secret_value()
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @field_validator("sqlite_path")
    @classmethod
    def validate_sqlite_path(cls, v: Path) -> Path:
        """Validate and normalize SQLite path."""
        if not v.suffix:
            v = v.with_suffix(".db")
        return v


class QueueSettings(BaseSettingsConfig):
    """
    Check Queue Settings

    The memory backend is in-process and only suitable for single-process
    deployments and tests. The redis backend uses a Redis Stream with a
    consumer group, so several worker processes can share one queue.
    """

    model_config = SettingsConfigDict(
        env_prefix="QUEUE_",
        env_file=".env",
        extra="ignore"
    )

    backend: QueueBackend = Field(default=QueueBackend.MEMORY)

    redis_url: str = Field(default="redis://localhost:6379/0")
    stream_name: str = Field(default="pulse:monitor-checks")
    dead_letter_stream: str = Field(default="pulse:monitor-checks:dlq")
    consumer_group: str = Field(default="pulse-workers")
    consumer_name: str = Field(default_factory=lambda: f"worker-{os.getpid()}")
    max_stream_length: int = Field(default=100_000, ge=1000)

    visibility_timeout: int = Field(
        default=60,
        ge=1,
        le=43200,
        description="Seconds a received message stays invisible before redelivery"
    )
    receive_batch_size: int = Field(default=10, ge=1, le=100)
    receive_wait_seconds: float = Field(
        default=1.0,
        ge=0,
        le=20,
        description="Long-poll wait when the queue is empty"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Redeliveries allowed before a message is dead-lettered"
    )


class SchedulerSettings(BaseSettingsConfig):
    """Scheduler Settings"""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        extra="ignore"
    )

    batch_size: int = Field(
        default=50,
        ge=1,
        le=5000,
        description="Maximum due monitors claimed per scheduling pass"
    )
    trigger_interval: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Seconds between passes when the built-in trigger is used"
    )
    check_timeout_seconds: int = Field(default=10, ge=1, le=120)
    expected_duration_ms: int = Field(default=15000, ge=100)
    user_agent: str = Field(default="Pulse-Engine-Monitor/1.0")
    message_source: str = Field(default="scheduler-service")


class WorkerSettings(BaseSettingsConfig):
    """Worker Pool Settings"""

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        env_file=".env",
        extra="ignore"
    )

    pool_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum number of checks in flight at once"
    )
    idle_sleep: float = Field(default=1.0, ge=0, le=60)
    error_backoff: float = Field(default=5.0, ge=0, le=300)
    drain_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        le=120,
        description="Extra time on top of the probe timeout allowed during drain"
    )
    retry_delay_seconds: int = Field(
        default=5,
        ge=0,
        le=900,
        description="Delay before an abandoned message becomes visible again"
    )


class NotificationSettings(BaseSettingsConfig):
    """Notification Channel Settings"""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        extra="ignore"
    )

    webhook_timeout: float = Field(default=10.0, ge=1, le=60)
    webhook_user_agent: str = Field(default="Pulse-Engine-Webhook/1.0")

    resend_api_key: Optional[SecretStr] = Field(default=None)
    resend_api_url: str = Field(default="https://api.resend.com/emails")
    resend_from_email: str = Field(default="alerts@pulse-engine.local")

    twilio_account_sid: Optional[str] = Field(default=None)
    twilio_auth_token: Optional[SecretStr] = Field(default=None)
    twilio_phone_number: Optional[str] = Field(default=None)
    twilio_api_base: str = Field(default="https://api.twilio.com/2010-04-01")

    @property
    def email_configured(self) -> bool:
        return self.resend_api_key is not None

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )


class LoggingSettings(BaseSettingsConfig):
    """Logging Settings"""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(default=LogLevel.INFO)
    console_enabled: bool = Field(default=True)
    colorize: bool = Field(default=True)
    file_enabled: bool = Field(default=False)
    file_path: Path = Field(default=Path("logs/pulse_engine.log"))
    file_rotation: str = Field(default="10 MB")
    file_retention: str = Field(default="7 days")
    error_file_enabled: bool = Field(default=False)
    error_file_path: Path = Field(default=Path("logs/errors.log"))
    json_enabled: bool = Field(default=False)


class ControlSettings(BaseSettingsConfig):
    """Trigger / worker-control HTTP surface settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONTROL_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(default=True)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    secret: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token required by the POST control routes"
    )


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)

    app_name: str = Field(default="Pulse Engine")
    app_version: str = Field(default="1.0.0")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    control: ControlSettings = Field(default_factory=ControlSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.debug = False
            self.database.echo = False
            self.database.create_tables = False
            if self.queue.backend == QueueBackend.MEMORY:
                raise ValueError(
                    "The in-memory queue cannot be used in production; "
                    "set QUEUE_BACKEND=redis"
                )
        elif self.debug and self.logging.level == LogLevel.INFO:
            self.logging.level = LogLevel.DEBUG

        return self

    def to_dict(self, *, exclude_secrets: bool = True) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = self.model_dump(mode="json")

        if exclude_secrets:
            def remove_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: remove_secrets(v)
                        for k, v in obj.items()
                        if "password" not in k.lower()
                        and "secret" not in k.lower()
                        and "token" not in k.lower()
                        and "api_key" not in k.lower()
                    }
                return obj

            data = remove_secrets(data)

        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings instance

    Raises:
        ConfigurationError: the environment holds an invalid value
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError.from_exception(
            e,
            message=f"Invalid settings: {e.error_count()} error(s)"
        ).with_details(
            fields=[".".join(str(part) for part in error["loc"]) for error in e.errors()]
        ) from e
