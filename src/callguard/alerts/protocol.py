"""
Alerting protocol and data classes.

Defines the alert record the health monitor emits and the shape of a
notification channel. Concrete channels live in channels.py; routing lives
in registry.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from callguard.core.clock import utcnow


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def _order(self) -> list[AlertSeverity]:
        return [
            AlertSeverity.INFO,
            AlertSeverity.WARNING,
            AlertSeverity.ERROR,
            AlertSeverity.CRITICAL,
        ]

    def __lt__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) < self._order().index(other)

    def __le__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) <= self._order().index(other)

    def __ge__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) >= self._order().index(other)

    def __gt__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) > self._order().index(other)


class AlertType(str, Enum):
    """Which health threshold was crossed."""

    ERROR_RATE = "error_rate"
    LATENCY = "latency"
    AVAILABILITY = "availability"


@dataclass(frozen=True)
class Alert:
    """
    A threshold breach for one operation key.

    Never mutated after creation.
    """

    type: AlertType
    operation_key: str
    observed_value: float
    threshold: float
    severity: AlertSeverity
    timestamp: datetime = field(default_factory=utcnow)
    message: str = ""

    @property
    def fingerprint(self) -> str:
        """Identity used for cooldown/deduplication."""
        return f"{self.type.value}|{self.operation_key}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "operation_key": self.operation_key,
            "observed_value": self.observed_value,
            "threshold": self.threshold,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }


@runtime_checkable
class AlertChannel(Protocol):
    """Anything callable with an Alert is a channel."""

    def __call__(self, alert: Alert) -> None: ...


__all__ = [
    "AlertSeverity",
    "AlertType",
    "Alert",
    "AlertChannel",
]
