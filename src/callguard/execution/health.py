"""Health monitoring for outbound calls.

Keeps rolling statistics per operation key and raises alerts when a key
crosses a threshold:

- error rate over the recent window
- average latency over the recent window
- availability (successes / calls) over the last ``availability_window``
  seconds, so a key that recovers from an outage returns to healthy

Alerts for the same (type, key) are suppressed for ``alert_cooldown``
seconds so a sustained outage produces one alert, not thousands.

Example:
    >>> monitor = HealthMonitor(alerts=AlertRegistry())
    >>> monitor.record("news:top", duration=0.21, success=True)
    >>> report = monitor.get_report()
    >>> print(report.status)  # "healthy" | "degraded" | "unhealthy"
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from callguard.alerts.protocol import Alert, AlertSeverity, AlertType
from callguard.alerts.registry import AlertRegistry
from callguard.core.clock import Clock, SystemClock, utcnow
from callguard.core.errors import ErrorKind
from callguard.core.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class CallRecord:
    """One logical call as seen by the monitor. Immutable once written."""

    operation_key: str
    start_time: float
    end_time: float
    success: bool
    error_kind: ErrorKind | None = None
    attempt: int = 1

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class HealthThresholds:
    """Configurable thresholds for alerting."""

    min_samples: int = 5

    # Fractions of the recent window
    error_rate_warning: float = 0.25
    error_rate_critical: float = 0.50

    # Seconds, averaged over the recent window
    latency_warning: float = 5.0
    latency_critical: float = 15.0

    # Success fraction over the availability window (lower is worse)
    availability_warning: float = 0.95
    availability_critical: float = 0.80


@dataclass
class OperationStats:
    """Rolling totals plus a bounded recent window for one key."""

    operation_key: str
    window_size: int = 100
    availability_window: float = 300.0
    count: int = 0
    success_count: int = 0
    fail_count: int = 0
    total_duration: float = 0.0
    last_error_kind: ErrorKind | None = None
    last_call_at: datetime | None = None
    recent: deque[CallRecord] = field(init=False)
    # (end_time, success) for calls inside the availability window
    outcomes: deque[tuple[float, bool]] = field(init=False)
    _window_successes: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.recent = deque(maxlen=self.window_size)
        self.outcomes = deque()

    def add(self, record: CallRecord) -> None:
        self.count += 1
        self.total_duration += record.duration
        if record.success:
            self.success_count += 1
        else:
            self.fail_count += 1
            self.last_error_kind = record.error_kind
        self.last_call_at = utcnow()
        self.recent.append(record)
        self.outcomes.append((record.end_time, record.success))
        if record.success:
            self._window_successes += 1

    def prune(self, now: float) -> None:
        """Drop outcomes older than the availability window."""
        cutoff = now - self.availability_window
        while self.outcomes and self.outcomes[0][0] <= cutoff:
            _, success = self.outcomes.popleft()
            if success:
                self._window_successes -= 1

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.count if self.count else 0.0

    @property
    def availability(self) -> float:
        """Success fraction over the availability window (call ``prune`` first)."""
        return self._window_successes / len(self.outcomes) if self.outcomes else 1.0

    @property
    def lifetime_availability(self) -> float:
        return self.success_count / self.count if self.count else 1.0

    @property
    def recent_error_rate(self) -> float:
        if not self.recent:
            return 0.0
        return sum(1 for r in self.recent if not r.success) / len(self.recent)

    @property
    def recent_average_latency(self) -> float:
        if not self.recent:
            return 0.0
        return sum(r.duration for r in self.recent) / len(self.recent)


@dataclass
class OperationHealth:
    """Health of one operation key at report time."""

    operation_key: str
    status: HealthStatus
    count: int
    success_count: int
    fail_count: int
    total_duration: float
    average_duration: float
    availability: float
    recent_error_rate: float
    recent_average_latency: float
    lifetime_availability: float = 1.0
    last_error_kind: ErrorKind | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_key": self.operation_key,
            "status": self.status.value,
            "count": self.count,
            "success_count": self.success_count,
            "fail_count": self.fail_count,
            "total_duration": round(self.total_duration, 6),
            "average_duration": round(self.average_duration, 6),
            "availability": round(self.availability, 4),
            "lifetime_availability": round(self.lifetime_availability, 4),
            "recent_error_rate": round(self.recent_error_rate, 4),
            "recent_average_latency": round(self.recent_average_latency, 6),
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
        }


@dataclass
class HealthReport:
    """Overall health report."""

    status: HealthStatus
    operations: dict[str, OperationHealth]
    components: dict[str, Any] = field(default_factory=dict)
    recent_alerts: list[Alert] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        """Check if overall status is healthy."""
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "operations": {key: op.to_dict() for key, op in self.operations.items()},
            "components": self.components,
            "recent_alerts": [alert.to_dict() for alert in self.recent_alerts],
        }


class HealthMonitor:
    """Per-operation statistics with threshold alerts.

    Parameters
    ----------
    thresholds : HealthThresholds
        Warning/critical levels and the minimum sample count.
    window_size : int
        Calls kept in each key's recent window.
    alert_cooldown : float
        Seconds during which a repeat of the same (type, key) alert is dropped.
    availability_window : float
        Seconds of history behind the availability figure.
    alerts : AlertRegistry
        Where alerts are published.
    """

    def __init__(
        self,
        *,
        thresholds: HealthThresholds | None = None,
        window_size: int = 100,
        alert_cooldown: float = 300.0,
        availability_window: float = 300.0,
        alerts: AlertRegistry | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.thresholds = thresholds or HealthThresholds()
        self.window_size = window_size
        self.alert_cooldown = alert_cooldown
        self.availability_window = availability_window
        self.alerts = alerts or AlertRegistry()
        self._clock = clock or SystemClock()
        self._stats: dict[str, OperationStats] = {}
        self._last_alert_at: dict[str, float] = {}

    def record(
        self,
        operation_key: str,
        duration: float,
        success: bool,
        error_kind: ErrorKind | None = None,
        attempt: int = 1,
    ) -> list[Alert]:
        """Record one completed call and evaluate thresholds.

        Returns:
            Alerts emitted by this record (after cooldown filtering).
        """
        end = self._clock.monotonic()
        record = CallRecord(
            operation_key=operation_key,
            start_time=end - duration,
            end_time=end,
            success=success,
            error_kind=None if success else error_kind,
            attempt=attempt,
        )
        stats = self._stats.get(operation_key)
        if stats is None:
            stats = OperationStats(
                operation_key=operation_key,
                window_size=self.window_size,
                availability_window=self.availability_window,
            )
            self._stats[operation_key] = stats
        stats.add(record)
        stats.prune(end)
        return self._evaluate(stats)

    # ── Thresholds ───────────────────────────────────────────────────

    def _evaluate(self, stats: OperationStats) -> list[Alert]:
        t = self.thresholds
        if len(stats.recent) < t.min_samples:
            return []

        candidates: list[Alert] = []

        error_rate = stats.recent_error_rate
        if error_rate > t.error_rate_warning:
            severity = AlertSeverity.CRITICAL if error_rate > t.error_rate_critical else AlertSeverity.WARNING
            candidates.append(
                self._make_alert(
                    AlertType.ERROR_RATE,
                    stats.operation_key,
                    error_rate,
                    t.error_rate_warning,
                    severity,
                    f"{error_rate:.0%} of the last {len(stats.recent)} calls failed",
                )
            )

        latency = stats.recent_average_latency
        if latency > t.latency_warning:
            severity = AlertSeverity.CRITICAL if latency > t.latency_critical else AlertSeverity.WARNING
            candidates.append(
                self._make_alert(
                    AlertType.LATENCY,
                    stats.operation_key,
                    latency,
                    t.latency_warning,
                    severity,
                    f"average latency {latency:.2f}s over the last {len(stats.recent)} calls",
                )
            )

        availability = stats.availability
        if availability < t.availability_warning:
            severity = (
                AlertSeverity.CRITICAL if availability < t.availability_critical else AlertSeverity.WARNING
            )
            candidates.append(
                self._make_alert(
                    AlertType.AVAILABILITY,
                    stats.operation_key,
                    availability,
                    t.availability_warning,
                    severity,
                    f"availability {availability:.1%} across {len(stats.outcomes)} calls"
                    f" in the last {stats.availability_window:g}s",
                )
            )

        emitted: list[Alert] = []
        now = self._clock.monotonic()
        for alert in candidates:
            last = self._last_alert_at.get(alert.fingerprint)
            if last is not None and now - last < self.alert_cooldown:
                continue
            self._last_alert_at[alert.fingerprint] = now
            logger.warning(
                "health.alert",
                alert_type=alert.type.value,
                operation_key=alert.operation_key,
                observed=round(alert.observed_value, 4),
                threshold=alert.threshold,
                severity=alert.severity.value,
            )
            self.alerts.publish(alert)
            emitted.append(alert)
        return emitted

    @staticmethod
    def _make_alert(
        alert_type: AlertType,
        operation_key: str,
        observed: float,
        threshold: float,
        severity: AlertSeverity,
        message: str,
    ) -> Alert:
        return Alert(
            type=alert_type,
            operation_key=operation_key,
            observed_value=observed,
            threshold=threshold,
            severity=severity,
            message=message,
        )

    # ── Reporting ────────────────────────────────────────────────────

    def _status_for(self, stats: OperationStats) -> HealthStatus:
        t = self.thresholds
        if len(stats.recent) < t.min_samples:
            return HealthStatus.HEALTHY
        error_rate = stats.recent_error_rate
        latency = stats.recent_average_latency
        availability = stats.availability
        if (
            error_rate > t.error_rate_critical
            or latency > t.latency_critical
            or availability < t.availability_critical
        ):
            return HealthStatus.UNHEALTHY
        if (
            error_rate > t.error_rate_warning
            or latency > t.latency_warning
            or availability < t.availability_warning
        ):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def operation_health(self, operation_key: str) -> OperationHealth | None:
        stats = self._stats.get(operation_key)
        if stats is None:
            return None
        stats.prune(self._clock.monotonic())
        return OperationHealth(
            operation_key=operation_key,
            status=self._status_for(stats),
            count=stats.count,
            success_count=stats.success_count,
            fail_count=stats.fail_count,
            total_duration=stats.total_duration,
            average_duration=stats.average_duration,
            availability=stats.availability,
            recent_error_rate=stats.recent_error_rate,
            recent_average_latency=stats.recent_average_latency,
            lifetime_availability=stats.lifetime_availability,
            last_error_kind=stats.last_error_kind,
        )

    def get_report(self, operation_key: str | None = None) -> HealthReport:
        """Snapshot for dashboards; optionally restricted to one key."""
        keys = [operation_key] if operation_key is not None else sorted(self._stats)
        operations = {}
        for key in keys:
            health = self.operation_health(key)
            if health is not None:
                operations[key] = health

        statuses = {op.status for op in operations.values()}
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        recent = self.alerts.recent()
        if operation_key is not None:
            recent = [a for a in recent if a.operation_key == operation_key]
        return HealthReport(status=overall, operations=operations, recent_alerts=recent)

    def records(self, operation_key: str) -> list[CallRecord]:
        """Recent window for ``operation_key``, oldest first."""
        stats = self._stats.get(operation_key)
        return list(stats.recent) if stats else []

    def reset(self) -> None:
        self._stats.clear()
        self._last_alert_at.clear()


__all__ = [
    "HealthStatus",
    "CallRecord",
    "HealthThresholds",
    "OperationStats",
    "OperationHealth",
    "HealthReport",
    "HealthMonitor",
]
