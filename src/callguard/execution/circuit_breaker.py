"""Circuit breaker pattern for fault tolerance.

Prevents hammering a downstream service that is already failing: after
enough failures the breaker opens and every attempt fails fast, without a
network call, until a cooldown has passed and a trial call succeeds.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: Trial requests test whether the service recovered

Transitions:
    CLOSED    → OPEN       failure_count >= failure_threshold
    OPEN      → HALF_OPEN  now - last_failure_at >= cooldown_seconds
    HALF_OPEN → CLOSED     success_threshold consecutive trial successes
    HALF_OPEN → OPEN       any trial failure (restarts the cooldown)

In CLOSED state each success decays ``failure_count`` by one, so a handful
of historical errors cannot trip the breaker forever.

Example:
    >>> from callguard.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker("openai", failure_threshold=5, cooldown_seconds=60)
    >>>
    >>> if breaker.allow():
    ...     try:
    ...         result = await call_service()
    ...         breaker.on_success()
    ...     except Exception:
    ...         breaker.on_failure()
    ...         raise
    ... else:
    ...     raise CircuitOpenError("Service unavailable")
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from callguard.core.clock import Clock, SystemClock, utcnow
from callguard.core.errors import CircuitOpenError
from callguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker for one downstream service.

    Attributes:
        name: Service identity this breaker protects
        failure_threshold: Failures before opening
        cooldown_seconds: Seconds after the last failure before a trial is allowed
        success_threshold: Consecutive trial successes needed to close
        half_open_max_calls: Max concurrent trial calls in half-open state
    """

    name: str = "default"
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    success_threshold: int = 2
    half_open_max_calls: int = 1
    clock: Clock = field(default_factory=SystemClock, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state (applies a due OPEN → HALF_OPEN move)."""
        self._check_state_transition()
        return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_at(self) -> float | None:
        return self._last_failure_at

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._last_failure_at is not None:
            elapsed = self.clock.monotonic() - self._last_failure_at
            if elapsed >= self.cooldown_seconds:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit.state_change",
            service=self.name,
            old=old_state.value,
            new=new_state.value,
            failures=self._failure_count,
        )

    def allow(self) -> bool:
        """Check whether an attempt may proceed.

        Returns:
            True if the attempt can go ahead, False to fail fast
        """
        self._check_state_transition()
        self._stats.total_requests += 1

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            self._stats.rejected_requests += 1
            return False

        # Half-open: allow limited trial requests
        if self._half_open_calls < self.half_open_max_calls:
            self._half_open_calls += 1
            return True

        self._stats.rejected_requests += 1
        return False

    def on_success(self) -> None:
        """Record a successful attempt."""
        self._stats.successful_requests += 1
        self._stats.last_success_time = utcnow()

        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            self._half_open_calls = max(0, self._half_open_calls - 1)
            if self._success_count >= self.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = max(0, self._failure_count - 1)

    def on_failure(self) -> None:
        """Record a failed attempt."""
        self._failure_count += 1
        self._stats.failed_requests += 1
        self._stats.last_failure_time = utcnow()
        self._last_failure_at = self.clock.monotonic()

        if self._state == CircuitState.CLOSED:
            if self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._transition_to(CircuitState.OPEN)

    def release(self) -> None:
        """Give back a half-open trial slot without judging the service.

        Used when an attempt ended in a caller-side error (validation, auth)
        that says nothing about the service's health.
        """
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_calls = max(0, self._half_open_calls - 1)

    def time_until_probe(self) -> float:
        """Seconds remaining before OPEN → HALF_OPEN."""
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return 0.0
        elapsed = self.clock.monotonic() - self._last_failure_at
        return max(0.0, self.cooldown_seconds - elapsed)

    def rejection_error(self, operation_key: str | None = None) -> CircuitOpenError:
        """Error for an attempt that ``allow()`` just refused.

        An open circuit reports the time left until the next trial. A
        half-open circuit with every trial slot taken has no such deadline,
        so it carries no ``retry_after``.
        """
        state = self.state
        if state == CircuitState.HALF_OPEN:
            return CircuitOpenError(
                f"Circuit '{self.name}' is half-open and all {self.half_open_max_calls} trial slot(s) are busy",
                operation_key=operation_key,
                context={"service": self.name, "state": state.value},
            )
        return CircuitOpenError(
            f"Circuit '{self.name}' is open, failing fast",
            operation_key=operation_key,
            retry_after=self.time_until_probe(),
            context={"service": self.name, "state": state.value},
        )

    def reset(self) -> None:
        """Reset circuit to closed state."""
        self._transition_to(CircuitState.CLOSED)
        self._last_failure_at = None

    def force_open(self) -> None:
        """Force circuit to open state (for maintenance)."""
        self._transition_to(CircuitState.OPEN)
        self._last_failure_at = self.clock.monotonic()

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the attempt
        """
        if not self.allow():
            raise self.rejection_error()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def to_dict(self) -> dict[str, Any]:
        """Status snapshot for health reports."""
        state = self.state
        return {
            "name": self.name,
            "state": state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "time_until_probe": round(self.time_until_probe(), 3),
            "total_requests": self._stats.total_requests,
            "rejected_requests": self._stats.rejected_requests,
            "failure_rate": round(self._stats.failure_rate, 2),
            "state_changes": self._stats.state_changes,
        }


class CircuitBreakerRegistry:
    """Named circuit breakers, one per downstream service identity."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        success_threshold: int = 2,
        half_open_max_calls: int = 1,
        clock: Clock | None = None,
    ):
        self._defaults: dict[str, Any] = {
            "failure_threshold": failure_threshold,
            "cooldown_seconds": cooldown_seconds,
            "success_threshold": success_threshold,
            "half_open_max_calls": half_open_max_calls,
        }
        self._clock = clock or SystemClock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        return self._breakers.get(name)

    def get_or_create(self, name: str, **overrides: Any) -> CircuitBreaker:
        """Get or create a circuit breaker by name."""
        breaker = self._breakers.get(name)
        if breaker is None:
            options = {**self._defaults, **overrides}
            breaker = CircuitBreaker(name=name, clock=self._clock, **options)
            self._breakers[name] = breaker
        return breaker

    def names(self) -> list[str]:
        return sorted(self._breakers)

    def remove(self, name: str) -> None:
        self._breakers.pop(name, None)

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.to_dict() for name, breaker in sorted(self._breakers.items())}


__all__ = [
    "CircuitState",
    "CircuitStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
