"""
Centralized configuration management for the token guardian.

This module provides a unified configuration system with support for:
- Environment variables
- Token format and lifecycle settings
- Remote tokenization authority settings (or pure-local mode)
- Validation using Pydantic
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import EnvironmentVariable, LogLevel, TokenDefaults, Timeouts


def _env_int(variable: EnvironmentVariable, default: int) -> int:
    return int(os.getenv(variable.value, str(default)))


def _env_bool(variable: EnvironmentVariable, default: bool = False) -> bool:
    return os.getenv(variable.value, str(default)).lower() == "true"


class TokenConfig(BaseModel):
    """Token format and lifecycle configuration."""

    hash_charset: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.TOKEN_HASH_CHARSET.value, TokenDefaults.HASH_CHARSET
        ),
        description="Characters allowed in the hash and checksum segments",
    )
    hash_length: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.TOKEN_HASH_LENGTH, TokenDefaults.HASH_LENGTH
        ),
        gt=0,
        description="Length of the hash segment",
    )
    checksum_length: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.TOKEN_CHECKSUM_LENGTH, TokenDefaults.CHECKSUM_LENGTH
        ),
        gt=0,
        description="Length of the checksum segment",
    )
    expiration_days: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.TOKEN_EXPIRATION_DAYS, TokenDefaults.EXPIRATION_DAYS
        ),
        gt=0,
        description="Token lifetime in days",
    )
    rotation_month: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.TOKEN_ROTATION_MONTH, TokenDefaults.ROTATION_MONTH
        ),
        description="Month (1-12) in which a new school year starts",
    )
    rotation_enabled: bool = Field(
        default=True, description="Rotate tokens nearing expiry during maintenance"
    )
    rotation_warning_days: int = Field(
        default=TokenDefaults.ROTATION_WARNING_DAYS,
        ge=0,
        description="Rotate tokens expiring within this many days",
    )
    cleanup_retention_days: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.TOKEN_RETENTION_DAYS, TokenDefaults.CLEANUP_RETENTION_DAYS
        ),
        ge=0,
        description="Keep ROTATED/REVOKED rows for this many days after their last update",
    )
    max_generation_attempts: int = Field(
        default=TokenDefaults.MAX_GENERATION_ATTEMPTS,
        gt=0,
        description="Collision retries before generation is considered exhausted",
    )

    @field_validator("hash_charset")
    def validate_charset(cls, v: str) -> str:
        """Charset must have at least two distinct characters and no separator."""
        if len(v) < 2:
            raise ValueError("hash_charset must contain at least two characters")
        if len(set(v)) != len(v):
            raise ValueError("hash_charset must not contain duplicate characters")
        if TokenDefaults.SEPARATOR in v:
            raise ValueError(f"hash_charset must not contain '{TokenDefaults.SEPARATOR}'")
        return v

    @field_validator("rotation_month")
    def validate_rotation_month(cls, v: int) -> int:
        """Validate month is a calendar month."""
        if not 1 <= v <= 12:
            raise ValueError(f"Invalid rotation month: {v}. Must be between 1 and 12")
        return v


class RemoteAuthorityConfig(BaseModel):
    """Remote tokenization authority configuration."""

    enabled: bool = Field(
        default_factory=lambda: _env_bool(EnvironmentVariable.REMOTE_ENABLED),
        description="Delegate token operations to the remote authority",
    )
    base_url: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.REMOTE_BASE_URL.value),
        description="Remote authority base URL",
    )
    api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.REMOTE_API_KEY.value),
        description="API key sent with every remote call",
    )
    connect_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.REMOTE_CONNECT_TIMEOUT.value, Timeouts.REMOTE_CONNECT)
        ),
        gt=0,
        description="Connection timeout for remote calls",
    )
    read_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.REMOTE_READ_TIMEOUT.value, Timeouts.REMOTE_READ)
        ),
        gt=0,
        description="Read timeout for remote data calls",
    )
    health_check_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(EnvironmentVariable.REMOTE_HEALTH_TIMEOUT.value, Timeouts.HEALTH_CHECK)
        ),
        gt=0,
        description="Read timeout for remote health checks",
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @model_validator(mode="after")
    def validate_base_url(self) -> "RemoteAuthorityConfig":
        """An enabled remote authority needs somewhere to call."""
        if self.enabled and not self.base_url:
            raise ValueError("base_url is required when the remote authority is enabled")
        if self.base_url:
            self.base_url = self.base_url.rstrip("/")
        return self


class MaintenanceConfig(BaseModel):
    """Schedule for the periodic maintenance jobs."""

    expire_sweep_interval_seconds: int = Field(
        default=Timeouts.EXPIRE_SWEEP_INTERVAL, gt=0, description="Expire sweep interval"
    )
    cleanup_interval_seconds: int = Field(
        default=Timeouts.CLEANUP_INTERVAL, gt=0, description="Retention cleanup interval"
    )
    rotation_interval_seconds: int = Field(
        default=Timeouts.ROTATION_INTERVAL, gt=0, description="Automatic rotation interval"
    )


class QueueConfig(BaseModel):
    """Queue configuration for Azure Storage Queues."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default="logs-queue", description="Logs queue name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class FeatureFlags(BaseModel):
    """Feature flags for controlling engine behavior."""

    enable_logs_queue: bool = Field(
        default_factory=lambda: _env_bool(EnvironmentVariable.ENABLE_LOGS_QUEUE),
        description="Ship logs to an Azure Storage Queue",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: _env_bool(EnvironmentVariable.DEBUG),
        description="Debug mode",
    )

    # Sub-configurations
    token: TokenConfig = Field(default_factory=TokenConfig, description="Token configuration")
    remote: RemoteAuthorityConfig = Field(
        default_factory=RemoteAuthorityConfig, description="Remote authority configuration"
    )
    maintenance: MaintenanceConfig = Field(
        default_factory=MaintenanceConfig, description="Maintenance schedule"
    )
    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    features: FeatureFlags = Field(default_factory=FeatureFlags, description="Feature flags")

    # Custom configuration
    custom: Dict[str, Any] = Field(default_factory=dict, description="Custom configuration values")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()

    def get_custom(self, key: str, default: Any = None) -> Any:
        """Get a custom configuration value."""
        return self.custom.get(key, default)

    def set_custom(self, key: str, value: Any) -> None:
        """Set a custom configuration value."""
        self.custom[key] = value


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
