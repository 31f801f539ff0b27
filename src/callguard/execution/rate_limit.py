"""Adaptive Rate Limiting — per-identity sliding windows with a feedback loop.

Manifesto:
External services publish rate limits, but the limit that actually works is
whatever the service can absorb *right now*. The adaptive limiter starts
every identity at ``base_limit`` admissions per window and lets observed
latency and error rate move that number:

- recent calls fast and clean  → ``current_limit`` × (1 + step), capped at
  ``max_factor × base_limit``
- recent calls slow or failing → ``current_limit`` × (1 − step), floored at
  ``min_factor × base_limit``
- anything in between          → unchanged

That is a negative-feedback loop: a struggling service gets less traffic
without anyone retuning a constant. The step is a heuristic knob; nothing
here guarantees convergence or damps oscillation.

ARCHITECTURE
────────────
::

    AdaptiveRateLimiter
      ├── dict[identity, RateWindow]
      │     ├── timestamps        ─ admissions inside the sliding window
      │     ├── recent_latencies  ─ deque(maxlen=sample_capacity)
      │     └── recent_errors     ─ deque(maxlen=sample_capacity)
      ├── .check_limit(identity)  → RateDecision(allowed, retry_after, current_limit)
      ├── .update_limit(identity, latency, error_occurred)
      └── .status() / .reset()

Related modules:
    circuit_breaker.py — fail-fast on sustained failures
    retry.py           — backoff on transient failures

Example::

    limiter = AdaptiveRateLimiter(base_limit=60, window_seconds=60)
    decision = limiter.check_limit("user-7:openai")
    if not decision.allowed:
        raise RateLimitError("slow down", retry_after=decision.retry_after)
    ...
    limiter.update_limit("user-7:openai", latency=0.42, error_occurred=False)

Tags:
    callguard, execution, rate-limit, adaptive, feedback
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from callguard.core.clock import Clock, SystemClock
from callguard.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateDecision:
    """Outcome of an admission check."""

    allowed: bool
    retry_after: float
    current_limit: float


@dataclass
class RateWindow:
    """Sliding-window and feedback state for one identity."""

    base_limit: float
    current_limit: float
    window_start: float
    sample_capacity: int = 100
    timestamps: deque[float] = field(default_factory=deque)
    recent_latencies: deque[float] = field(init=False)
    recent_errors: deque[bool] = field(init=False)

    def __post_init__(self) -> None:
        self.recent_latencies = deque(maxlen=self.sample_capacity)
        self.recent_errors = deque(maxlen=self.sample_capacity)

    @property
    def average_latency(self) -> float:
        if not self.recent_latencies:
            return 0.0
        return sum(self.recent_latencies) / len(self.recent_latencies)

    @property
    def error_rate(self) -> float:
        if not self.recent_errors:
            return 0.0
        return sum(1 for failed in self.recent_errors if failed) / len(self.recent_errors)


class AdaptiveRateLimiter:
    """Per-identity sliding-window limiter whose limit follows observed health.

    Parameters
    ----------
    base_limit : int
        Admissions per window an identity starts with.
    window_seconds : float
        Length of the sliding window.
    step : float
        Fractional change applied per adjustment (0.10 = 10%).
    """

    def __init__(
        self,
        *,
        base_limit: int = 60,
        window_seconds: float = 60.0,
        sample_capacity: int = 100,
        step: float = 0.10,
        max_factor: float = 2.0,
        min_factor: float = 0.5,
        good_latency: float = 1.0,
        high_latency: float = 5.0,
        low_error_rate: float = 0.05,
        high_error_rate: float = 0.20,
        clock: Clock | None = None,
    ) -> None:
        if base_limit <= 0:
            raise ValueError(f"base_limit must be positive, got {base_limit}")
        if not 0 < step < 1:
            raise ValueError(f"step must be in (0, 1), got {step}")
        self.base_limit = base_limit
        self.window_seconds = window_seconds
        self.sample_capacity = sample_capacity
        self.step = step
        self.max_factor = max_factor
        self.min_factor = min_factor
        self.good_latency = good_latency
        self.high_latency = high_latency
        self.low_error_rate = low_error_rate
        self.high_error_rate = high_error_rate
        self._clock = clock or SystemClock()
        self._windows: dict[str, RateWindow] = {}
        self._base_overrides: dict[str, int] = {}

    def configure(self, identity: str, base_limit: int) -> None:
        """Give ``identity`` its own base limit (resets its current limit)."""
        if base_limit <= 0:
            raise ValueError(f"base_limit must be positive, got {base_limit}")
        self._base_overrides[identity] = base_limit
        self._windows.pop(identity, None)

    def window(self, identity: str) -> RateWindow:
        """Get or create the window for ``identity``."""
        window = self._windows.get(identity)
        if window is None:
            base = float(self._base_overrides.get(identity, self.base_limit))
            window = RateWindow(
                base_limit=base,
                current_limit=base,
                window_start=self._clock.monotonic(),
                sample_capacity=self.sample_capacity,
            )
            self._windows[identity] = window
        return window

    def _evict(self, window: RateWindow, now: float) -> None:
        cutoff = now - self.window_seconds
        while window.timestamps and window.timestamps[0] <= cutoff:
            window.timestamps.popleft()
        window.window_start = window.timestamps[0] if window.timestamps else now

    def check_limit(self, identity: str) -> RateDecision:
        """Admit or deny one call for ``identity``.

        An admitted call is counted in the window immediately.
        """
        now = self._clock.monotonic()
        window = self.window(identity)
        self._evict(window, now)

        if len(window.timestamps) >= window.current_limit:
            retry_after = max(0.0, window.timestamps[0] + self.window_seconds - now)
            logger.warning(
                "rate_limit.denied",
                identity=identity,
                in_window=len(window.timestamps),
                current_limit=round(window.current_limit, 2),
                retry_after=round(retry_after, 3),
            )
            return RateDecision(False, retry_after, window.current_limit)

        window.timestamps.append(now)
        return RateDecision(True, 0.0, window.current_limit)

    def update_limit(self, identity: str, latency: float, error_occurred: bool) -> float:
        """Feed back one completed call and adjust the limit.

        Returns:
            The new ``current_limit``.
        """
        window = self.window(identity)
        window.recent_latencies.append(latency)
        window.recent_errors.append(error_occurred)

        average_latency = window.average_latency
        error_rate = window.error_rate
        previous = window.current_limit

        if average_latency >= self.high_latency or error_rate >= self.high_error_rate:
            window.current_limit = max(
                window.base_limit * self.min_factor,
                window.current_limit * (1 - self.step),
            )
        elif average_latency <= self.good_latency and error_rate <= self.low_error_rate:
            window.current_limit = min(
                window.base_limit * self.max_factor,
                window.current_limit * (1 + self.step),
            )

        if window.current_limit != previous:
            logger.debug(
                "rate_limit.adjusted",
                identity=identity,
                previous=round(previous, 2),
                current=round(window.current_limit, 2),
                average_latency=round(average_latency, 4),
                error_rate=round(error_rate, 4),
            )
        return window.current_limit

    def current_limit(self, identity: str) -> float:
        return self.window(identity).current_limit

    def status(self) -> dict[str, dict[str, Any]]:
        """Current usage per identity for health reports."""
        now = self._clock.monotonic()
        status: dict[str, dict[str, Any]] = {}
        for identity, window in self._windows.items():
            self._evict(window, now)
            status[identity] = {
                "in_window": len(window.timestamps),
                "current_limit": round(window.current_limit, 2),
                "base_limit": window.base_limit,
                "average_latency": round(window.average_latency, 4),
                "error_rate": round(window.error_rate, 4),
                "utilization": round(len(window.timestamps) / window.current_limit, 4),
            }
        return status

    def reset(self, identity: str | None = None) -> None:
        """Reset one identity or all of them."""
        if identity is None:
            self._windows.clear()
        else:
            self._windows.pop(identity, None)


__all__ = ["RateDecision", "RateWindow", "AdaptiveRateLimiter"]
