"""Tests for alert records, channels and the subscriber registry."""

import io

import pytest

from callguard.alerts import (
    Alert,
    AlertChannel,
    AlertRegistry,
    AlertSeverity,
    AlertType,
    ConsoleChannel,
    LogChannel,
)


def _alert(severity=AlertSeverity.WARNING, key="news:top") -> Alert:
    return Alert(
        type=AlertType.ERROR_RATE,
        operation_key=key,
        observed_value=0.4,
        threshold=0.25,
        severity=severity,
        message="40% of the last 10 calls failed",
    )


class TestAlert:
    def test_frozen(self):
        alert = _alert()
        with pytest.raises(AttributeError):
            alert.threshold = 0.5

    def test_fingerprint(self):
        assert _alert().fingerprint == "error_rate|news:top"

    def test_to_dict(self):
        data = _alert().to_dict()
        assert data["type"] == "error_rate"
        assert data["severity"] == "WARNING"
        assert data["observed_value"] == 0.4
        assert "timestamp" in data

    def test_severity_ordering(self):
        assert AlertSeverity.INFO < AlertSeverity.WARNING < AlertSeverity.ERROR < AlertSeverity.CRITICAL
        assert AlertSeverity.CRITICAL >= AlertSeverity.ERROR


class TestRegistry:
    def test_publish_to_all_subscribers(self, alert_registry):
        first, second = [], []
        alert_registry.subscribe(first.append)
        alert_registry.subscribe(second.append)
        alert = _alert()

        assert alert_registry.publish(alert) == 2
        assert first == [alert]
        assert second == [alert]

    def test_unsubscribe(self, alert_registry):
        received = []
        unsubscribe = alert_registry.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        alert_registry.publish(_alert())
        assert received == []
        assert alert_registry.subscriber_count == 0

    def test_failing_channel_isolated(self, alert_registry):
        received = []

        def broken(alert):
            raise RuntimeError("webhook down")

        alert_registry.subscribe(broken)
        alert_registry.subscribe(received.append)

        assert alert_registry.publish(_alert()) == 1
        assert len(received) == 1
        assert alert_registry.stats()["delivery_failures"] == 1

    def test_recent_bounded(self):
        registry = AlertRegistry(keep_recent=3)
        for i in range(5):
            registry.publish(_alert(key=f"k{i}"))
        assert [a.operation_key for a in registry.recent()] == ["k2", "k3", "k4"]
        assert [a.operation_key for a in registry.recent(1)] == ["k4"]
        assert registry.stats()["published"] == 5


class TestChannels:
    def test_channels_satisfy_protocol(self):
        assert isinstance(ConsoleChannel(), AlertChannel)
        assert isinstance(LogChannel(), AlertChannel)

    def test_console_output(self):
        stream = io.StringIO()
        channel = ConsoleChannel(color=False, stream=stream)
        channel(_alert())
        output = stream.getvalue()
        assert "[WARNING] error_rate news:top" in output
        assert "40% of the last 10 calls failed" in output

    def test_min_severity_filter(self):
        stream = io.StringIO()
        channel = ConsoleChannel(color=False, stream=stream, min_severity=AlertSeverity.CRITICAL)
        channel(_alert(AlertSeverity.WARNING))
        assert stream.getvalue() == ""
        channel(_alert(AlertSeverity.CRITICAL))
        assert "CRITICAL" in stream.getvalue()

    def test_disabled_channel(self):
        stream = io.StringIO()
        channel = ConsoleChannel(color=False, stream=stream)
        channel.disable()
        channel(_alert())
        assert stream.getvalue() == ""
        channel.enable()
        channel(_alert())
        assert stream.getvalue() != ""

    def test_log_channel(self):
        from structlog.testing import capture_logs

        with capture_logs() as logs:
            LogChannel()(_alert(AlertSeverity.CRITICAL))
        assert logs[0]["event"] == "alert.raised"
        assert logs[0]["log_level"] == "error"
        assert logs[0]["operation_key"] == "news:top"
