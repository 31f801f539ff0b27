"""Tests for the FastAPI health/cache router."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from callguard.api import create_health_router
from callguard.core.errors import ErrorKind
from callguard.execution.orchestrator import ResilientCaller


@pytest.fixture
def caller(clock) -> ResilientCaller:
    return ResilientCaller(clock=clock)


@pytest.fixture
def client(caller) -> TestClient:
    app = FastAPI()
    app.include_router(create_health_router(caller), prefix="/callguard")
    return TestClient(app)


class TestHealthEndpoints:
    def test_empty_health(self, client):
        response = client.get("/callguard/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["operations"] == {}
        assert "circuit_breakers" in data["components"]

    def test_health_with_operations(self, client, caller):
        for _ in range(5):
            caller.health.record("news:top", 0.2, success=False, error_kind=ErrorKind.SERVER_ERROR)
        caller.health.record("ai:chat", 0.1, success=True)

        data = client.get("/callguard/health").json()
        assert data["status"] == "unhealthy"
        assert data["operations"]["news:top"]["fail_count"] == 5
        assert data["operations"]["ai:chat"]["status"] == "healthy"

    def test_single_operation(self, client, caller):
        caller.health.record("ai:chat", 0.1, success=True)
        data = client.get("/callguard/health/ai:chat").json()
        assert list(data["operations"]) == ["ai:chat"]

    def test_unknown_operation_404(self, client):
        assert client.get("/callguard/health/never:called").status_code == 404


class TestCacheEndpoint:
    def test_invalidate(self, client, caller):
        caller.cache.set("news:us", 1, tags=("news",))
        caller.cache.set("news:uk", 2, tags=("news",))
        caller.cache.set("ai:chat", 3, tags=("ai",))

        response = client.post("/callguard/cache/invalidate", json={"pattern": "news*"})
        assert response.status_code == 200
        assert response.json() == {"pattern": "news*", "removed": 2}
        assert len(caller.cache) == 1

    def test_empty_pattern_rejected(self, client):
        assert client.post("/callguard/cache/invalidate", json={"pattern": ""}).status_code == 422


class TestAlertsEndpoint:
    def test_recent_alerts(self, client, caller):
        for _ in range(5):
            caller.health.record("news:top", 0.2, success=False, error_kind=ErrorKind.NETWORK)

        alerts = client.get("/callguard/alerts/recent").json()
        assert {a["type"] for a in alerts} == {"error_rate", "availability"}
        assert all(a["operation_key"] == "news:top" for a in alerts)

    def test_limit(self, client, caller):
        for _ in range(5):
            caller.health.record("news:top", 0.2, success=False, error_kind=ErrorKind.NETWORK)
        assert len(client.get("/callguard/alerts/recent", params={"limit": 1}).json()) == 1
