"""Built-in alert channels: console output and structured log events."""

from __future__ import annotations

import sys
from typing import TextIO

from callguard.alerts.protocol import Alert, AlertSeverity
from callguard.core.logging import get_logger

logger = get_logger(__name__)


class BaseChannel:
    """
    Common severity filtering and enable/disable for channels.

    Subclasses implement :meth:`send`; calling the channel applies the filter
    first.
    """

    def __init__(
        self,
        name: str,
        *,
        min_severity: AlertSeverity = AlertSeverity.WARNING,
        enabled: bool = True,
    ):
        self._name = name
        self._min_severity = min_severity
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def min_severity(self) -> AlertSeverity:
        return self._min_severity

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def should_send(self, alert: Alert) -> bool:
        return self._enabled and alert.severity >= self._min_severity

    def send(self, alert: Alert) -> None:
        raise NotImplementedError

    def __call__(self, alert: Alert) -> None:
        if self.should_send(alert):
            self.send(alert)


class ConsoleChannel(BaseChannel):
    """
    Console output channel for development.

    Prints alerts to a stream (stdout by default) with optional colour.
    """

    _COLORS = {
        AlertSeverity.INFO: "\033[34m",  # Blue
        AlertSeverity.WARNING: "\033[33m",  # Yellow
        AlertSeverity.ERROR: "\033[31m",  # Red
        AlertSeverity.CRITICAL: "\033[35m",  # Magenta
    }

    def __init__(
        self,
        name: str = "console",
        *,
        min_severity: AlertSeverity = AlertSeverity.INFO,
        color: bool = True,
        stream: TextIO | None = None,
        **kwargs: object,
    ):
        super().__init__(name, min_severity=min_severity, **kwargs)  # type: ignore[arg-type]
        self._color = color
        self._stream = stream

    def send(self, alert: Alert) -> None:
        stream = self._stream or sys.stdout
        if self._color:
            color = self._COLORS.get(alert.severity, "")
            reset = "\033[0m"
        else:
            color = reset = ""

        print(f"{color}[{alert.severity.value}] {alert.type.value} {alert.operation_key}{reset}", file=stream)
        print(f"  Observed: {alert.observed_value:.4g} (threshold {alert.threshold:.4g})", file=stream)
        if alert.message:
            print(f"  Message: {alert.message}", file=stream)


class LogChannel(BaseChannel):
    """Emit alerts as structured log events (``alert.raised``)."""

    def __init__(self, name: str = "log", *, min_severity: AlertSeverity = AlertSeverity.INFO, **kwargs: object):
        super().__init__(name, min_severity=min_severity, **kwargs)  # type: ignore[arg-type]

    def send(self, alert: Alert) -> None:
        log = logger.error if alert.severity >= AlertSeverity.ERROR else logger.warning
        log(
            "alert.raised",
            alert_type=alert.type.value,
            operation_key=alert.operation_key,
            observed_value=alert.observed_value,
            threshold=alert.threshold,
            severity=alert.severity.value,
        )


__all__ = ["BaseChannel", "ConsoleChannel", "LogChannel"]
