"""
callguard - resilient outbound calls for asyncio services.

Wraps calls to unreliable, rate-limited services (AI inference endpoints,
news and trends APIs) with caching, request deduplication, adaptive rate
limiting, priority scheduling, circuit breaking, retries, timeouts and
health alerting.

Usage:
    from callguard import CallContext, CallGuardSettings, ResilientCaller

    async with ResilientCaller.from_settings(CallGuardSettings()) as caller:
        result = await caller.execute("ai:summarize", lambda: client.summarize(text))
"""

__version__ = "0.1.0"

from callguard.alerts import Alert, AlertSeverity, AlertType, ConsoleChannel, LogChannel
from callguard.core import (
    CallError,
    CallGuardSettings,
    CircuitOpenError,
    ErrorKind,
    classify_error,
    configure_logging,
    get_logger,
)
from callguard.execution import (
    MISS,
    CallContext,
    HealthReport,
    HealthStatus,
    Priority,
    ResilientCaller,
    make_key,
)

__all__ = [
    "__version__",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "ConsoleChannel",
    "LogChannel",
    "CallError",
    "CallGuardSettings",
    "CircuitOpenError",
    "ErrorKind",
    "classify_error",
    "configure_logging",
    "get_logger",
    "MISS",
    "CallContext",
    "HealthReport",
    "HealthStatus",
    "Priority",
    "ResilientCaller",
    "make_key",
]
