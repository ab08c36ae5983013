"""
Error hierarchy for the token guardian.

Every error carries an ``ErrorCode``, the HTTP status an outer layer should
answer with, a context dict and the current correlation id, and logs itself
when raised (>= 500 as error, >= 400 as warning) unless the class sets
``log_level``. The token taxonomy at the bottom is what callers of the
lifecycle and resolution services handle.
"""

import logging
import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

_thread_local = threading.local()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    if hasattr(_thread_local, "correlation_id"):
        del _thread_local.correlation_id


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONFIGURATION_ERROR = "1003"

    # Validation (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    TYPE_MISMATCH = "2003"
    CONSTRAINT_VIOLATION = "2004"
    UNKNOWN_TOKEN_TYPE = "2005"

    # Token state (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    EXPIRED = "3004"
    LIMIT_EXCEEDED = "3005"
    TOKEN_INACTIVE = "3006"

    # Lifecycle (4xxx)
    INVALID_STATE_TRANSITION = "4001"

    # Remote authority (5xxx)
    EXTERNAL_API_ERROR = "5002"


# Context keys kept out of API payloads
_INTERNAL_KEYS = ("cause", "error_id", "correlation_id")


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    # Overrides the status-derived level for errors callers routinely absorb
    log_level: Optional[int] = None

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Args:
            message: Human-readable error message
            error_code: Standardized error code
            status_code: HTTP status the outer layer should map this to
            cause: Exception that triggered this one
            **context: Extra fields for logs and payloads (token_value, status, ...)
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())

        self.context = dict(context)
        self.context["error_id"] = self.error_id
        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id
        if cause is not None:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

    @property
    def public_context(self) -> Dict[str, Any]:
        return {k: v for k, v in self.context.items() if k not in _INTERNAL_KEYS}

    def _log_error(self) -> None:
        from .utils.logger import get_logger

        logger = get_logger()
        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "correlation_id": self.context.get("correlation_id"),
            "context": self.public_context,
        }

        message = f"{type(self).__name__}: {self.message}"
        if self.log_level is not None:
            logger.log(self.log_level, message, extra=log_data)
        elif self.status_code >= 500:
            logger.error(message, extra=log_data, exc_info=self.cause)
        elif self.status_code >= 400:
            logger.warning(message, extra=log_data)
        else:
            logger.info(message, extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """Error payload for API responses; cause and traceback only on request."""
        error: Dict[str, Any] = {
            "id": self.error_id,
            "code": self.error_code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": self.public_context,
        }
        if "correlation_id" in self.context:
            error["correlation_id"] = self.context["correlation_id"]

        cause = self.context.get("cause")
        if include_cause and cause:
            error["cause"] = {"type": cause["type"], "message": cause["message"]}
            if include_traceback:
                error["cause"]["traceback"] = cause["traceback"]

        return {"error": error}

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add context after construction; returns self for chaining."""
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        chain: List[Exception] = [self]
        current = self.cause
        while current is not None:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


class RepositoryError(BaseError):
    """Token store failures."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer failures; always 500."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Bad input; always 400."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """Failures talking to another service; always 502."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, 502, cause, **context)


# ==================== TOKEN ERRORS ====================


class InvalidTokenFormatError(ValidationError):
    """Malformed token string or checksum mismatch."""

    def __init__(self, message: str = "Invalid token format", **kwargs):
        super().__init__(
            message=message, field="token_value", error_code=ErrorCode.INVALID_FORMAT, **kwargs
        )


class UnknownTokenTypeError(ValidationError):
    """Token prefix is not one of STU/TCH/CRS/SEC/ASN."""

    def __init__(self, message: str = "Unknown token type", **kwargs):
        super().__init__(
            message=message, field="prefix", error_code=ErrorCode.UNKNOWN_TOKEN_TYPE, **kwargs
        )


class TokenTypeMismatchError(ValidationError):
    def __init__(self, message: str = "Token type mismatch", **kwargs):
        super().__init__(
            message=message, field="token_type", error_code=ErrorCode.TYPE_MISMATCH, **kwargs
        )


class TokenNotFoundError(BaseError):
    def __init__(self, message: str = "Token not found", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class TokenInactiveError(BaseError):
    """Token exists but is REVOKED, ROTATED or EXPIRED."""

    def __init__(self, message: str = "Token is not active", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.TOKEN_INACTIVE, status_code=410, **kwargs
        )


class TokenExpiredError(BaseError):
    """Token is still ACTIVE but past its expiry (the sweep has not run yet)."""

    def __init__(self, message: str = "Token has expired", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.EXPIRED, status_code=410, **kwargs)


class InvalidTokenStateError(BaseError):
    """Rotate or revoke attempted on a token that is not ACTIVE."""

    def __init__(self, message: str = "Invalid token state transition", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            **kwargs,
        )


class DuplicateTokenError(RepositoryError):
    """Insert hit a unique index; the lifecycle service retries or returns the winner."""

    log_level = logging.DEBUG

    def __init__(self, message: str = "Duplicate token", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.DUPLICATE, status_code=409, **kwargs)


class TokenGenerationExhaustedError(ServiceError):
    """
    No unique token value within the attempt bound.

    Points at an exhausted keyspace or a broken store; alert on it instead of
    retrying.
    """

    def __init__(self, message: str = "Token generation attempts exhausted", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.LIMIT_EXCEEDED,
            operation="generate_token",
            **kwargs,
        )


class RemoteUnavailableError(ExternalServiceError):
    """Remote authority call failed; absorbed by the local fallback."""

    log_level = logging.DEBUG

    def __init__(self, message: str = "Remote tokenization authority unavailable", **kwargs):
        super().__init__(message=message, service_name="remote_token_authority", **kwargs)
