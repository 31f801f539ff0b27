"""Tests for CallGuardSettings (pydantic-settings)."""

import pytest
from pydantic import ValidationError

from callguard.core.settings import CallGuardSettings, RateLimitSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file."""
    monkeypatch.chdir(tmp_path)
    import os

    for name in list(os.environ):
        if name.startswith("CALLGUARD_"):
            monkeypatch.delenv(name)


class TestDefaults:
    def test_defaults(self):
        settings = CallGuardSettings()
        assert settings.service_name == "callguard"
        assert settings.circuit_breaker.failure_threshold == 5
        assert settings.circuit_breaker.cooldown_seconds == 60.0
        assert settings.retry.max_retries == 3
        assert settings.retry.base_delay == 1.0
        assert settings.retry.max_delay == 30.0
        assert settings.retry.backoff_multiplier == 2.0
        assert settings.rate_limit.step == 0.10
        assert settings.rate_limit.sample_capacity == 100
        assert settings.scheduler.max_concurrent == 10
        assert settings.timeout.cancel_on_timeout is False
        assert settings.health.availability_window_seconds == 300.0


class TestEnvironment:
    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("CALLGUARD_RETRY__MAX_RETRIES", "5")
        monkeypatch.setenv("CALLGUARD_CIRCUIT_BREAKER__COOLDOWN_SECONDS", "12.5")
        monkeypatch.setenv("CALLGUARD_SERVICE_NAME", "trends-api")
        settings = CallGuardSettings()
        assert settings.retry.max_retries == 5
        assert settings.circuit_breaker.cooldown_seconds == 12.5
        assert settings.service_name == "trends-api"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("CALLGUARD_SCHEDULER__MAX_CONCURRENT=3\n")
        assert CallGuardSettings().scheduler.max_concurrent == 3


class TestValidation:
    def test_step_must_be_fraction(self):
        with pytest.raises(ValidationError):
            RateLimitSettings(step=1.5)

    def test_latency_ordering(self):
        with pytest.raises(ValidationError):
            RateLimitSettings(good_latency_seconds=6.0, high_latency_seconds=5.0)

    def test_failure_threshold_positive(self, monkeypatch):
        monkeypatch.setenv("CALLGUARD_CIRCUIT_BREAKER__FAILURE_THRESHOLD", "0")
        with pytest.raises(ValidationError):
            CallGuardSettings()
