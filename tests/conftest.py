"""
Shared pytest fixtures for callguard tests.

This module provides:
- A manual clock so cooldowns, TTLs and backoff run instantly
- Location-based markers (integration vs unit)

Usage:
    def test_cooldown(clock):
        breaker = CircuitBreaker(cooldown_seconds=60, clock=clock)
        clock.advance(61)
"""

from pathlib import Path

import pytest

from callguard.alerts import AlertRegistry
from callguard.testing import ManualClock


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "orchestrator" in str(test_path) or "api" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def clock() -> ManualClock:
    """A clock starting at t=1000 that only moves when told."""
    return ManualClock(start=1000.0)


@pytest.fixture
def alert_registry() -> AlertRegistry:
    return AlertRegistry()


@pytest.fixture
def collected_alerts(alert_registry: AlertRegistry) -> list:
    """Every alert published to ``alert_registry``, in order."""
    received: list = []
    alert_registry.subscribe(received.append)
    return received
