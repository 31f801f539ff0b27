"""
Health alerting: alert records, channels and the subscriber registry.

Usage:
    from callguard.alerts import AlertRegistry, ConsoleChannel

    registry = AlertRegistry()
    unsubscribe = registry.subscribe(ConsoleChannel(color=False))
"""

from callguard.alerts.channels import BaseChannel, ConsoleChannel, LogChannel
from callguard.alerts.protocol import Alert, AlertChannel, AlertSeverity, AlertType
from callguard.alerts.registry import AlertRegistry

__all__ = [
    "Alert",
    "AlertChannel",
    "AlertSeverity",
    "AlertType",
    "AlertRegistry",
    "BaseChannel",
    "ConsoleChannel",
    "LogChannel",
]
