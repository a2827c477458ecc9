"""
Error classification for terminal operations.

A raw failure (exception, error string, or an object with ``message``/``code``)
is mapped once into a ``ClassifiedError`` at the device boundary. Everything
downstream (retry decisions, circuit breaker, notifications, job results)
works with the classified form.
"""
import errno
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from attendance_engine.utils.datetime_utils import now_utc


class ErrorCategory(str, Enum):
    NETWORK = "NETWORK"
    AUTHENTICATION = "AUTHENTICATION"
    TIMEOUT = "TIMEOUT"
    DATA_CORRUPTION = "DATA_CORRUPTION"
    DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
    SDK_ERROR = "SDK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


DEFAULT_RETRYABLE_CATEGORIES: FrozenSet[ErrorCategory] = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.DEVICE_UNAVAILABLE,
})

# Checked in order; the first matching group wins.
_SDK_MARKERS = ("zklib", "zkt", "pyzk", "zkerrorresponse")
# exception classes raised by pyzk live here
_SDK_MODULES = ("zk.",)
_NETWORK_MARKERS = ("network", "connection", "socket")
_NETWORK_CODES = ("econnrefused", "enotfound", "enetunreach")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_TIMEOUT_CODES = ("etimedout",)
_AUTH_MARKERS = ("auth", "unauthorized", "forbidden", "credentials")
_DEVICE_MARKERS = ("device", "unavailable", "offline", "not found")
_DATA_MARKERS = ("corrupt", "invalid data", "malformed", "parse")
_VALIDATION_MARKERS = ("validation", "invalid")


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    code: str
    retryable: bool
    retry_count: int = 0
    device_id: Optional[str] = None
    operation: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=now_utc)

    def format_for_logging(self) -> str:
        text = f"[{self.category.value}] {self.severity.value}: {self.message}"
        details = []
        if self.device_id:
            details.append(f"Device: {self.device_id}")
        if self.operation:
            details.append(f"Operation: {self.operation}")
        if details:
            text += " (" + ", ".join(details) + ")"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "retry_count": self.retry_count,
            "device_id": self.device_id,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
        }


def _error_message(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    return str(error)


def _error_code(error: Any) -> Optional[str]:
    code = getattr(error, "code", None)
    if code is None and isinstance(error, OSError) and error.errno is not None:
        code = errno.errorcode.get(error.errno)
    if code is None:
        return None
    return str(code)


def _contains(text: str, markers) -> bool:
    return any(marker in text for marker in markers)


def _error_type_path(error: Any) -> str:
    if not isinstance(error, BaseException):
        return ""
    cls = type(error)
    return f"{cls.__module__}.{cls.__name__}".lower()


def classify_error(error: Any, operation: Optional[str] = None) -> ErrorCategory:
    """
    Map a raw failure to an ErrorCategory.

    Args:
        error: Exception, message string, or object exposing ``message``/``code``
        operation: Name of the operation that failed (optional)

    Returns:
        The first matching category, UNKNOWN if nothing matches
    """
    if error is None:
        return ErrorCategory.UNKNOWN

    explicit = getattr(error, "category", None)
    if isinstance(explicit, ErrorCategory):
        return explicit

    message = _error_message(error).lower()
    code = (_error_code(error) or "").lower()
    op = (operation or "").lower()

    type_path = _error_type_path(error)
    if type_path.startswith(_SDK_MODULES):
        # ZKNetworkError is pyzk reporting an unreachable host
        if "network" in type_path:
            return ErrorCategory.NETWORK
        return ErrorCategory.SDK_ERROR

    if _contains(message, _SDK_MARKERS) or _contains(type_path, _SDK_MARKERS) or "zkt" in op or "sdk" in op:
        return ErrorCategory.SDK_ERROR

    # TimeoutError subclasses OSError, so check it before ConnectionError-ish codes
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT

    if (
        isinstance(error, ConnectionError)
        or _contains(message, _NETWORK_MARKERS)
        or _contains(code, _NETWORK_CODES)
    ):
        return ErrorCategory.NETWORK

    if _contains(message, _TIMEOUT_MARKERS) or _contains(code, _TIMEOUT_CODES):
        return ErrorCategory.TIMEOUT

    if _contains(message, _AUTH_MARKERS):
        return ErrorCategory.AUTHENTICATION

    if _contains(message, _DEVICE_MARKERS):
        return ErrorCategory.DEVICE_UNAVAILABLE

    if _contains(message, _DATA_MARKERS):
        return ErrorCategory.DATA_CORRUPTION

    if _contains(message, _VALIDATION_MARKERS):
        return ErrorCategory.VALIDATION_ERROR

    return ErrorCategory.UNKNOWN


def determine_severity(category: ErrorCategory, retry_count: int, max_attempts: int) -> ErrorSeverity:
    """
    Severity of a failure given how many attempts have been made so far.

    Authentication failures, and network failures that used the whole retry
    budget, are CRITICAL. Anything past half the budget is HIGH.
    """
    if category == ErrorCategory.AUTHENTICATION:
        return ErrorSeverity.CRITICAL
    if category == ErrorCategory.NETWORK and retry_count >= max_attempts:
        return ErrorSeverity.CRITICAL
    if retry_count > max_attempts / 2:
        return ErrorSeverity.HIGH
    if category in (ErrorCategory.DEVICE_UNAVAILABLE, ErrorCategory.DATA_CORRUPTION):
        return ErrorSeverity.MEDIUM
    if category in (ErrorCategory.TIMEOUT, ErrorCategory.NETWORK):
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


def classify(
    error: Any,
    operation: Optional[str] = None,
    device_id: Optional[str] = None,
    retry_count: int = 0,
    max_attempts: int = 3,
    retryable_categories: FrozenSet[ErrorCategory] = DEFAULT_RETRYABLE_CATEGORIES,
    context: Optional[Dict[str, Any]] = None,
) -> ClassifiedError:
    """Build the tagged ClassifiedError for a raw failure."""
    if isinstance(error, ClassifiedError):
        return error
    category = classify_error(error, operation)
    return ClassifiedError(
        category=category,
        severity=determine_severity(category, retry_count, max_attempts),
        message=_error_message(error) or "Unknown error",
        code=_error_code(error) or category.value,
        retryable=category in retryable_categories,
        retry_count=retry_count,
        device_id=device_id,
        operation=operation,
        context=dict(context or {}),
    )
