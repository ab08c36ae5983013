"""
Constants and enums for the token guardian.

This module centralizes the magic strings and numeric defaults used throughout
the tokenization engine to ensure consistency and maintainability.
"""

from enum import Enum


class QueueName(str, Enum):
    """Standard queue names used for log shipping."""

    LOGS = "logs-queue"


class DependencyStatus(str, Enum):
    """Status of external dependencies."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


class AuthorityMode(str, Enum):
    """How token operations are served."""

    STANDALONE = "standalone"
    INTEGRATED = "integrated"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    TOKEN_HASH_CHARSET = "GUARDIAN_TOKEN_HASH_CHARSET"
    TOKEN_HASH_LENGTH = "GUARDIAN_TOKEN_HASH_LENGTH"
    TOKEN_CHECKSUM_LENGTH = "GUARDIAN_TOKEN_CHECKSUM_LENGTH"
    TOKEN_EXPIRATION_DAYS = "GUARDIAN_TOKEN_EXPIRATION_DAYS"
    TOKEN_ROTATION_MONTH = "GUARDIAN_TOKEN_ROTATION_MONTH"
    TOKEN_RETENTION_DAYS = "GUARDIAN_TOKEN_RETENTION_DAYS"
    REMOTE_ENABLED = "GUARDIAN_REMOTE_ENABLED"
    REMOTE_BASE_URL = "GUARDIAN_REMOTE_BASE_URL"
    REMOTE_API_KEY = "GUARDIAN_REMOTE_API_KEY"
    REMOTE_CONNECT_TIMEOUT = "GUARDIAN_REMOTE_CONNECT_TIMEOUT"
    REMOTE_READ_TIMEOUT = "GUARDIAN_REMOTE_READ_TIMEOUT"
    REMOTE_HEALTH_TIMEOUT = "GUARDIAN_REMOTE_HEALTH_TIMEOUT"
    ENABLE_LOGS_QUEUE = "GUARDIAN_ENABLE_LOGS_QUEUE"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    TOKEN_VALUE = "token_value"
    TOKEN_TYPE = "token_type"
    VENDOR_SCOPE = "vendor_scope"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    OPERATION = "operation"


# Token format defaults
class TokenDefaults:
    """Defaults for the external token string format and lifecycle."""

    # Excludes I, O, 0 and 1
    HASH_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    HASH_LENGTH = 8
    CHECKSUM_LENGTH = 2
    SEPARATOR = "_"
    SALT_BYTES = 32
    EXPIRATION_DAYS = 365
    ROTATION_MONTH = 8
    ROTATION_WARNING_DAYS = 30
    CLEANUP_RETENTION_DAYS = 365
    MAX_GENERATION_ATTEMPTS = 100
    UNIVERSAL_SCOPE_KEY = ""


# Time-related constants (in seconds)
class Timeouts:
    """Timeout values in seconds."""

    REMOTE_CONNECT = 5
    REMOTE_READ = 10
    HEALTH_CHECK = 5
    EXPIRE_SWEEP_INTERVAL = 3600
    CLEANUP_INTERVAL = 86400
    ROTATION_INTERVAL = 86400
