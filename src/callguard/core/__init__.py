"""Core primitives: error taxonomy, logging, settings, clock."""

from callguard.core.clock import Clock, SystemClock, utcnow
from callguard.core.errors import (
    AuthError,
    CallCancelledError,
    CallError,
    CircuitOpenError,
    ContentPolicyError,
    ErrorKind,
    NetworkError,
    OperationTimeoutError,
    RateLimitError,
    ServerError,
    ValidationError,
    classify_error,
    classify_kind,
)
from callguard.core.logging import LogContext, configure_logging, get_logger
from callguard.core.settings import CallGuardSettings

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "utcnow",
    # Errors
    "ErrorKind",
    "CallError",
    "NetworkError",
    "OperationTimeoutError",
    "RateLimitError",
    "ServerError",
    "AuthError",
    "ValidationError",
    "ContentPolicyError",
    "CircuitOpenError",
    "CallCancelledError",
    "classify_error",
    "classify_kind",
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    # Settings
    "CallGuardSettings",
]
