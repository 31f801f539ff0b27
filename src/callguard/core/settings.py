"""Configuration for callguard.

Settings are validated at startup by pydantic and read from environment
variables prefixed ``CALLGUARD_`` (nested fields use ``__``) and from a
``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Every threshold in the subsystem (breaker trip count, retry budget,
    rate-limit step size, alert thresholds) is a tunable here rather than a
    literal buried in a component.

Examples:
    >>> settings = CallGuardSettings()
    >>> settings.circuit_breaker.failure_threshold
    5

    Environment override::

        CALLGUARD_RETRY__MAX_RETRIES=5
        CALLGUARD_RATE_LIMIT__BASE_LIMIT=120

Tags:
    settings, configuration, pydantic, environment, callguard
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseModel):
    """Result cache knobs."""

    max_entries: int = Field(default=1000, gt=0)
    default_ttl_seconds: float = Field(default=300.0, ge=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class CircuitBreakerSettings(BaseModel):
    """Per-service breaker knobs."""

    failure_threshold: int = Field(default=5, gt=0)
    success_threshold: int = Field(default=2, gt=0)
    cooldown_seconds: float = Field(default=60.0, ge=0)
    half_open_max_calls: int = Field(default=1, gt=0)


class RetrySettings(BaseModel):
    """Backoff knobs."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class TimeoutSettings(BaseModel):
    """Per-attempt deadline knobs."""

    default_timeout_seconds: float = Field(default=30.0, ge=0)
    cancel_on_timeout: bool = False


class SchedulerSettings(BaseModel):
    """Worker-slot knobs."""

    max_concurrent: int = Field(default=10, gt=0)


class RateLimitSettings(BaseModel):
    """Adaptive limiter knobs."""

    base_limit: int = Field(default=60, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)
    sample_capacity: int = Field(default=100, gt=0)
    step: float = Field(default=0.10, gt=0, lt=1)
    max_factor: float = Field(default=2.0, ge=1.0)
    min_factor: float = Field(default=0.5, gt=0, le=1.0)
    good_latency_seconds: float = Field(default=1.0, gt=0)
    high_latency_seconds: float = Field(default=5.0, gt=0)
    low_error_rate: float = Field(default=0.05, ge=0, le=1)
    high_error_rate: float = Field(default=0.20, ge=0, le=1)
    wait_for_admission: bool = False
    max_admission_wait_seconds: float = Field(default=10.0, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> RateLimitSettings:
        if self.good_latency_seconds > self.high_latency_seconds:
            raise ValueError("good_latency_seconds must not exceed high_latency_seconds")
        if self.low_error_rate > self.high_error_rate:
            raise ValueError("low_error_rate must not exceed high_error_rate")
        return self


class HealthSettings(BaseModel):
    """Rolling-statistics and alert knobs."""

    window_size: int = Field(default=100, gt=0)
    min_samples: int = Field(default=5, gt=0)
    error_rate_threshold: float = Field(default=0.25, ge=0, le=1)
    critical_error_rate: float = Field(default=0.50, ge=0, le=1)
    latency_threshold_seconds: float = Field(default=5.0, gt=0)
    critical_latency_seconds: float = Field(default=15.0, gt=0)
    availability_threshold: float = Field(default=0.95, ge=0, le=1)
    critical_availability: float = Field(default=0.80, ge=0, le=1)
    availability_window_seconds: float = Field(default=300.0, gt=0)
    alert_cooldown_seconds: float = Field(default=300.0, ge=0)
    recent_alerts: int = Field(default=50, gt=0)


class CallGuardSettings(BaseSettings):
    """Top-level settings.

    Order of precedence (highest → lowest):
        1. Environment variables (``CALLGUARD_RETRY__MAX_RETRIES``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="CALLGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    service_name: str = "callguard"
    log_level: str = "INFO"
    log_json: bool | None = None

    cache: CacheSettings = Field(default_factory=CacheSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)


__all__ = [
    "CacheSettings",
    "CircuitBreakerSettings",
    "RetrySettings",
    "TimeoutSettings",
    "SchedulerSettings",
    "RateLimitSettings",
    "HealthSettings",
    "CallGuardSettings",
]
