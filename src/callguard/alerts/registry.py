"""Alert registry: fan an alert out to every subscribed channel."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

from callguard.alerts.protocol import Alert, AlertChannel
from callguard.core.logging import get_logger

logger = get_logger(__name__)


class AlertRegistry:
    """
    Subscribers for health alerts.

    A channel that raises is logged and skipped; the remaining channels still
    receive the alert, and the call that triggered it is unaffected.
    """

    def __init__(self, *, keep_recent: int = 50):
        self._channels: list[AlertChannel] = []
        self._recent: deque[Alert] = deque(maxlen=keep_recent)
        self._published = 0
        self._delivery_failures = 0

    def subscribe(self, channel: AlertChannel) -> Callable[[], None]:
        """Register ``channel``. Returns a function that unsubscribes it."""
        self._channels.append(channel)

        def unsubscribe() -> None:
            try:
                self._channels.remove(channel)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, alert: Alert) -> int:
        """Deliver ``alert`` to all channels.

        Returns:
            Number of channels that accepted it without raising.
        """
        self._recent.append(alert)
        self._published += 1
        delivered = 0
        for channel in list(self._channels):
            try:
                channel(alert)
            except Exception:
                self._delivery_failures += 1
                logger.exception(
                    "alerts.delivery_failed",
                    channel=getattr(channel, "name", repr(channel)),
                    alert_type=alert.type.value,
                    operation_key=alert.operation_key,
                )
            else:
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._channels)

    def recent(self, limit: int | None = None) -> list[Alert]:
        """Most recent alerts, newest last."""
        alerts = list(self._recent)
        return alerts[-limit:] if limit else alerts

    def stats(self) -> dict[str, int]:
        return {
            "subscribers": len(self._channels),
            "published": self._published,
            "delivery_failures": self._delivery_failures,
        }


__all__ = ["AlertRegistry"]
