"""
Structured error types for outbound calls.

Every terminal failure that leaves :meth:`ResilientCaller.execute` is a
:class:`CallError`. Callers drive user-visible behaviour off ``kind`` and
``retryable`` rather than raw messages.

Manifesto:
    - **Fixed taxonomy:** Seven kinds cover everything a downstream service
      can do to us, plus ``cancelled`` for work withdrawn from the queue
    - **Retry semantics by kind:** ``retryable`` defaults from the kind
    - **Never bare:** Unknown exceptions are classified, not re-raised raw
    - **Error chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         CallError                             │
        │      (kind, retryable, operation_key, retry_after, cause)     │
        ├──────────────────────────────────────────────────────────────┤
        │  retryable by default        │  never retryable               │
        │  ─────────────────────       │  ────────────────              │
        │  NetworkError                │  AuthError                     │
        │  OperationTimeoutError       │  ValidationError               │
        │  RateLimitError              │  ContentPolicyError            │
        │  ServerError                 │  CircuitOpenError (network)    │
        │                              │  CallCancelledError            │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = classify_error(ConnectionResetError("peer reset"))
    >>> err.kind, err.retryable
    (<ErrorKind.NETWORK: 'network'>, True)

    >>> err = RateLimitError("slow down", retry_after=2.5)
    >>> err.to_dict()["retry_after"]
    2.5

Guardrails:
    ❌ DON'T: Raise plain Exception from a wrapped operation and hope
    ✅ DO: Raise a CallError subclass when the kind is known

    ❌ DON'T: Flip retryable to True for auth/validation/contentPolicy
    ✅ DO: Let the kind decide

Tags:
    error-handling, taxonomy, retry-logic, callguard
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of a failed outbound call."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rateLimit"
    AUTH = "auth"
    VALIDATION = "validation"
    CONTENT_POLICY = "contentPolicy"
    SERVER_ERROR = "serverError"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        """Whether errors of this kind are worth another attempt."""
        return self in RETRYABLE_KINDS

    @property
    def counts_against_service(self) -> bool:
        """Whether this kind says something about the downstream service's health.

        Auth, validation and content-policy failures are caused by the request,
        not by the service, so they neither trip nor heal a circuit.
        """
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMIT,
        ErrorKind.SERVER_ERROR,
    }
)


class CallError(Exception):
    """
    Base exception for every terminal outbound-call failure.

    Attributes:
        message: Human-readable description
        kind: ErrorKind classification
        retryable: Whether the caller may try again later
        operation_key: Key of the logical call that failed (set by the orchestrator)
        retry_after: Seconds the downstream service asked us to wait, if known
        attempts: Number of attempts made before surfacing
        cause: Original exception, also chained as ``__cause__``
        context: Free-form metadata for logging
    """

    default_kind: ErrorKind = ErrorKind.SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
        operation_key: str | None = None,
        retry_after: float | None = None,
        attempts: int = 0,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.retryable = retryable if retryable is not None else self.kind.retryable
        self.operation_key = operation_key
        self.retry_after = retry_after
        self.attempts = attempts
        self.cause = cause
        self.context: dict[str, Any] = dict(context or {})

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CallError:
        """Attach metadata (fluent API). ``operation_key`` sets the attribute."""
        if "operation_key" in kwargs:
            self.operation_key = kwargs.pop("operation_key")
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging and API responses."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "retryable": self.retryable,
            "message": self.message,
            "operation_key": self.operation_key,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.attempts:
            result["attempts"] = self.attempts
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value}, "
            f"retryable={self.retryable})"
        )


# =============================================================================
# RETRYABLE KINDS
# =============================================================================


class NetworkError(CallError):
    """Connection refused, reset, DNS failure and friends."""

    default_kind = ErrorKind.NETWORK


class OperationTimeoutError(CallError):
    """An attempt exceeded its deadline.

    Attributes:
        timeout: The deadline in seconds that was exceeded
    """

    default_kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class RateLimitError(CallError):
    """The downstream service (or our own limiter) refused for load reasons."""

    default_kind = ErrorKind.RATE_LIMIT


class ServerError(CallError):
    """5xx-style failures on the far side."""

    default_kind = ErrorKind.SERVER_ERROR


# =============================================================================
# NON-RETRYABLE KINDS
# =============================================================================


class AuthError(CallError):
    """Credentials rejected or missing."""

    default_kind = ErrorKind.AUTH


class ValidationError(CallError):
    """The request itself is malformed."""

    default_kind = ErrorKind.VALIDATION


class ContentPolicyError(CallError):
    """The service refused the content (safety / moderation filters)."""

    default_kind = ErrorKind.CONTENT_POLICY


class CircuitOpenError(CallError):
    """Raised without calling the service while its circuit is open.

    Reported as a network failure, but never retryable on this attempt.
    """

    default_kind = ErrorKind.NETWORK

    def __init__(self, message: str = "Circuit breaker is open", **kwargs: Any):
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class CallCancelledError(CallError):
    """A queued call was withdrawn before it was dispatched."""

    default_kind = ErrorKind.CANCELLED


_KIND_TO_CLASS: dict[ErrorKind, type[CallError]] = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.TIMEOUT: OperationTimeoutError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONTENT_POLICY: ContentPolicyError,
    ErrorKind.CANCELLED: CallCancelledError,
}

_CONTENT_POLICY_MARKERS = (
    "content policy",
    "content_policy",
    "content filter",
    "safety system",
    "moderation",
)


# =============================================================================
# CLASSIFICATION
# =============================================================================


def error_for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> CallError:
    """Build the CallError subclass that matches ``kind``."""
    return _KIND_TO_CLASS[kind](message, **kwargs)


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def _retry_after(exc: BaseException) -> float | None:
    value = getattr(exc, "retry_after", None)
    if value is None:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            value = headers.get("Retry-After") or headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _kind_for_status(status: int) -> ErrorKind | None:
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 408:
        return ErrorKind.TIMEOUT
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.VALIDATION
    return None


def classify_kind(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception to an ErrorKind."""
    if isinstance(exc, CallError):
        return exc.kind
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT

    message = str(exc).lower()
    if any(marker in message for marker in _CONTENT_POLICY_MARKERS):
        return ErrorKind.CONTENT_POLICY

    status = _status_code(exc)
    if status is not None:
        kind = _kind_for_status(status)
        if kind is not None:
            return kind

    if isinstance(exc, PermissionError):
        return ErrorKind.AUTH
    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorKind.NETWORK
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorKind.VALIDATION
    return ErrorKind.SERVER_ERROR


def classify_error(exc: BaseException, operation_key: str | None = None) -> CallError:
    """Return ``exc`` as a CallError, wrapping and classifying it if needed.

    Args:
        exc: Any exception raised by a wrapped operation
        operation_key: Attached to the result when it has none yet

    Returns:
        The same instance for CallErrors, otherwise a new subclass instance
        chained to ``exc``.
    """
    if isinstance(exc, CallError):
        if operation_key and exc.operation_key is None:
            exc.operation_key = operation_key
        return exc

    kind = classify_kind(exc)
    message = str(exc) or exc.__class__.__name__
    return error_for_kind(
        kind,
        message,
        operation_key=operation_key,
        retry_after=_retry_after(exc),
        cause=exc,
    )


__all__ = [
    "ErrorKind",
    "RETRYABLE_KINDS",
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
    "error_for_kind",
    "classify_kind",
    "classify_error",
]
