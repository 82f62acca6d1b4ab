"""
Custom exceptions for TrustWatch.

Only validation errors reach callers. Dependency and persistence errors are
raised inside the core and converted to failed or neutral results before they
leave it.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes for TrustWatch."""
    UNKNOWN_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    CONFIGURATION_ERROR = "E1002"
    TIMEOUT_ERROR = "E1003"

    SERVICE_UNAVAILABLE = "E4000"
    RATE_LIMITED = "E4002"
    PERSISTENCE_ERROR = "E4003"


class TrustWatchError(Exception):
    """Base exception for TrustWatch."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result: Dict[str, Any] = {
            "error": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(TrustWatchError):
    """Malformed input to a public operation (missing identity, bad period)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"field": field} if field else None,
        )
        self.field = field


class ConfigurationError(TrustWatchError):
    def __init__(self, message: str):
        super().__init__(message, error_code=ErrorCode.CONFIGURATION_ERROR)


class DependencyError(TrustWatchError):
    """A store or history source is unreachable."""

    def __init__(self, dependency: str, cause: Optional[Exception] = None):
        super().__init__(
            f"{dependency} unavailable",
            error_code=ErrorCode.SERVICE_UNAVAILABLE,
            details={"dependency": dependency},
            cause=cause,
        )
        self.dependency = dependency


class PersistenceError(TrustWatchError):
    """An audit write failed."""

    def __init__(self, category: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Failed to persist {category} audit event",
            error_code=ErrorCode.PERSISTENCE_ERROR,
            details={"category": category},
            cause=cause,
        )


MAX_KEY_LENGTH = 255


def require(value: Optional[str], field: str, max_length: int = MAX_KEY_LENGTH) -> str:
    """Return a stripped non-empty string or raise ValidationError."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return value
