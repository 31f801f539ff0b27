"""Resilient call orchestrator — one entry point composing every guard.

Manifesto:
    Application code should not have to remember to check a cache, join an
    identical in-flight request, respect a rate limit, wait for a worker
    slot, consult a circuit breaker, retry with backoff and enforce a
    deadline, in that order, every single time. ``ResilientCaller.execute``
    does all of it, and reports the outcome to the health monitor.

Architecture:
    ::

        execute(operation_key, operation, context)
          │
          ├── TTLCache.get                 hit → return
          ├── RequestDeduplicator.dedupe   in flight → await shared future
          │     └── _guarded_call
          │           ├── AdaptiveRateLimiter.check_limit   deny → RateLimitError
          │           ├── ConcurrencyScheduler.schedule     may queue by priority
          │           │     └── RetryPolicy.execute
          │           │           ├── before_attempt: CircuitBreaker.allow → CircuitOpenError
          │           │           ├── TimeoutGuard.with_timeout(operation)
          │           │           └── after_attempt: on_success / on_failure / release
          │           ├── AdaptiveRateLimiter.update_limit
          │           ├── TTLCache.set
          │           └── HealthMonitor.record → Alert
          └── CallError (always classified, operation_key set)

    Every component instance is owned by the caller; nothing is a module
    level singleton, so two callers in one process never share state.

Examples:
    >>> async with ResilientCaller.from_settings(CallGuardSettings()) as caller:
    ...     trends = await caller.execute(
    ...         "news:trending",
    ...         lambda: client.get_trending(region="us"),
    ...         CallContext(cache_ttl_seconds=120, cache_tags=("news",)),
    ...     )

Tags:
    orchestrator, resilience, circuit-breaker, retry, cache, callguard
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from callguard.alerts.protocol import Alert
from callguard.alerts.registry import AlertRegistry
from callguard.core.clock import Clock, SystemClock
from callguard.core.errors import (
    CallError,
    CircuitOpenError,
    ErrorKind,
    RateLimitError,
    classify_error,
)
from callguard.core.logging import LogContext, configure_logging, get_logger
from callguard.core.settings import CallGuardSettings
from callguard.execution.cache import MISS, TTLCache
from callguard.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from callguard.execution.dedup import RequestDeduplicator
from callguard.execution.health import HealthMonitor, HealthReport, HealthThresholds
from callguard.execution.rate_limit import AdaptiveRateLimiter
from callguard.execution.retry import RetryPolicy
from callguard.execution.scheduler import ConcurrencyScheduler, Priority
from callguard.execution.timeout import TimeoutGuard

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CallContext:
    """Per-call options for :meth:`ResilientCaller.execute`.

    Attributes:
        priority: Scheduler priority, larger is dispatched first
        cache_ttl_seconds: TTL for the cached result; ``None`` uses the cache
            default, ``0`` disables caching for this call
        cache_tags: Tags stored with the result for pattern invalidation
        identity: Rate-limit identity (defaults to the service)
        service: Circuit breaker name (defaults to the ``operation_key``
            prefix before the first ``:``)
        timeout_seconds: Per-attempt deadline; ``None`` uses the default
        dedupe: Share an identical in-flight call instead of starting another
    """

    priority: int = Priority.NORMAL
    cache_ttl_seconds: float | None = None
    cache_tags: tuple[str, ...] = ()
    identity: str | None = None
    service: str | None = None
    timeout_seconds: float | None = None
    dedupe: bool = True

    @property
    def caching(self) -> bool:
        return self.cache_ttl_seconds is None or self.cache_ttl_seconds > 0


def service_for(operation_key: str, context: CallContext) -> str:
    """Circuit breaker name for a call."""
    if context.service:
        return context.service
    return operation_key.split(":", 1)[0]


@dataclass
class _AttemptTally:
    """Attempts made and seconds spent inside them for one logical call."""

    attempts: int = 0
    service_time: float = 0.0


class ResilientCaller:
    """Composes cache, dedup, rate limiting, scheduling, circuit breaking,
    retries, timeouts and health monitoring around outbound calls.

    Components may be passed in individually (tests do this); anything left
    out is built with defaults. Use :meth:`from_settings` to build every
    component from :class:`CallGuardSettings`.
    """

    def __init__(
        self,
        *,
        cache: TTLCache | None = None,
        deduplicator: RequestDeduplicator | None = None,
        rate_limiter: AdaptiveRateLimiter | None = None,
        scheduler: ConcurrencyScheduler | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_guard: TimeoutGuard | None = None,
        health: HealthMonitor | None = None,
        alerts: AlertRegistry | None = None,
        default_timeout_seconds: float | None = 30.0,
        wait_for_admission: bool = False,
        max_admission_wait_seconds: float = 10.0,
        sweep_interval_seconds: float = 60.0,
        clock: Clock | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        if alerts is None:
            alerts = health.alerts if health is not None else AlertRegistry()
        self.alerts = alerts
        self.cache = cache if cache is not None else TTLCache(clock=self.clock)
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(clock=self.clock)
        self.scheduler = scheduler or ConcurrencyScheduler(clock=self.clock)
        self.breakers = breakers or CircuitBreakerRegistry(clock=self.clock)
        self.retry_policy = retry_policy or RetryPolicy(clock=self.clock)
        self.timeout_guard = timeout_guard or TimeoutGuard(clock=self.clock)
        self.health = health or HealthMonitor(alerts=self.alerts, clock=self.clock)
        self.default_timeout_seconds = default_timeout_seconds
        self.wait_for_admission = wait_for_admission
        self.max_admission_wait_seconds = max_admission_wait_seconds
        self.sweep_interval_seconds = sweep_interval_seconds

    @classmethod
    def from_settings(
        cls,
        settings: CallGuardSettings,
        *,
        clock: Clock | None = None,
        setup_logging: bool = True,
    ) -> ResilientCaller:
        """Build a caller whose components follow ``settings``.

        Also configures structlog from ``log_level``, ``log_json`` and
        ``service_name`` unless ``setup_logging`` is False (for hosts that
        own their logging setup).
        """
        if setup_logging:
            configure_logging(settings.log_level, settings.log_json, settings.service_name)
        clock = clock or SystemClock()
        cb = settings.circuit_breaker
        rl = settings.rate_limit
        hs = settings.health
        alerts = AlertRegistry(keep_recent=hs.recent_alerts)
        return cls(
            cache=TTLCache(
                max_entries=settings.cache.max_entries,
                default_ttl_seconds=settings.cache.default_ttl_seconds,
                clock=clock,
            ),
            rate_limiter=AdaptiveRateLimiter(
                base_limit=rl.base_limit,
                window_seconds=rl.window_seconds,
                sample_capacity=rl.sample_capacity,
                step=rl.step,
                max_factor=rl.max_factor,
                min_factor=rl.min_factor,
                good_latency=rl.good_latency_seconds,
                high_latency=rl.high_latency_seconds,
                low_error_rate=rl.low_error_rate,
                high_error_rate=rl.high_error_rate,
                clock=clock,
            ),
            scheduler=ConcurrencyScheduler(settings.scheduler.max_concurrent, clock=clock),
            breakers=CircuitBreakerRegistry(
                failure_threshold=cb.failure_threshold,
                cooldown_seconds=cb.cooldown_seconds,
                success_threshold=cb.success_threshold,
                half_open_max_calls=cb.half_open_max_calls,
                clock=clock,
            ),
            retry_policy=RetryPolicy(
                max_retries=settings.retry.max_retries,
                base_delay=settings.retry.base_delay,
                max_delay=settings.retry.max_delay,
                backoff_multiplier=settings.retry.backoff_multiplier,
                clock=clock,
            ),
            timeout_guard=TimeoutGuard(cancel_on_timeout=settings.timeout.cancel_on_timeout, clock=clock),
            health=HealthMonitor(
                thresholds=HealthThresholds(
                    min_samples=hs.min_samples,
                    error_rate_warning=hs.error_rate_threshold,
                    error_rate_critical=hs.critical_error_rate,
                    latency_warning=hs.latency_threshold_seconds,
                    latency_critical=hs.critical_latency_seconds,
                    availability_warning=hs.availability_threshold,
                    availability_critical=hs.critical_availability,
                ),
                window_size=hs.window_size,
                alert_cooldown=hs.alert_cooldown_seconds,
                availability_window=hs.availability_window_seconds,
                alerts=alerts,
                clock=clock,
            ),
            alerts=alerts,
            default_timeout_seconds=settings.timeout.default_timeout_seconds,
            wait_for_admission=rl.wait_for_admission,
            max_admission_wait_seconds=rl.max_admission_wait_seconds,
            sweep_interval_seconds=settings.cache.sweep_interval_seconds,
            clock=clock,
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start background maintenance (the cache sweeper)."""
        if not self.cache.sweeper_running:
            self.cache.start_sweeper(self.sweep_interval_seconds)
        logger.info("caller.started", sweep_interval=self.sweep_interval_seconds)

    async def close(self) -> None:
        await self.cache.stop_sweeper()
        logger.info("caller.closed")

    async def __aenter__(self) -> ResilientCaller:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Execution ────────────────────────────────────────────────────

    async def execute(
        self,
        operation_key: str,
        operation: Callable[[], Awaitable[T]],
        context: CallContext | None = None,
    ) -> T:
        """Run ``operation`` behind every guard.

        Args:
            operation_key: Identity of the logical call; also the cache and
                dedup key
            operation: Zero-arg callable returning an awaitable; invoked once
                per attempt
            context: Per-call options

        Returns:
            The operation's result (possibly from cache or a shared call)

        Raises:
            CallError: Terminal failure, classified, with ``operation_key`` set
        """
        ctx = context or CallContext()
        async with LogContext(operation_key=operation_key):
            if ctx.caching:
                cached = self.cache.get(operation_key)
                if cached is not MISS:
                    logger.debug("call.cache_hit")
                    return cached

            if ctx.dedupe:
                return await self.deduplicator.dedupe(
                    operation_key,
                    lambda: self._guarded_call(operation_key, operation, ctx),
                )
            return await self._guarded_call(operation_key, operation, ctx)

    async def _guarded_call(
        self,
        operation_key: str,
        operation: Callable[[], Awaitable[T]],
        ctx: CallContext,
    ) -> T:
        service = service_for(operation_key, ctx)
        identity = ctx.identity or service
        breaker = self.breakers.get_or_create(service)
        started = self.clock.monotonic()
        tally = _AttemptTally()

        try:
            await self._admit(operation_key, identity)
            result = await self.scheduler.schedule(
                lambda: self._attempts(operation_key, operation, ctx, breaker, tally),
                priority=ctx.priority,
                key=operation_key,
            )
        except Exception as exc:
            error = classify_error(exc, operation_key)
            if error.operation_key is None:
                error.operation_key = operation_key
            duration = self.clock.monotonic() - started
            self._settle(operation_key, identity, duration, error, tally)
            if error is exc:
                raise
            raise error from exc

        duration = self.clock.monotonic() - started
        if ctx.caching:
            self.cache.set(operation_key, result, ttl_seconds=ctx.cache_ttl_seconds, tags=ctx.cache_tags)
        self._settle(operation_key, identity, duration, None, tally)
        return result

    async def _admit(self, operation_key: str, identity: str) -> None:
        decision = self.rate_limiter.check_limit(identity)
        if decision.allowed:
            return

        if self.wait_for_admission:
            deadline = self.clock.monotonic() + self.max_admission_wait_seconds
            while not decision.allowed and self.clock.monotonic() + decision.retry_after <= deadline:
                logger.debug("call.admission_wait", identity=identity, wait=round(decision.retry_after, 3))
                await self.clock.sleep(decision.retry_after)
                decision = self.rate_limiter.check_limit(identity)
            if decision.allowed:
                return

        raise RateLimitError(
            f"Rate limit reached for '{identity}' ({decision.current_limit:.0f} per window)",
            operation_key=operation_key,
            retry_after=decision.retry_after,
            context={"identity": identity, "current_limit": decision.current_limit},
        )

    async def _attempts(
        self,
        operation_key: str,
        operation: Callable[[], Awaitable[T]],
        ctx: CallContext,
        breaker: CircuitBreaker,
        tally: _AttemptTally,
    ) -> T:
        timeout = ctx.timeout_seconds if ctx.timeout_seconds is not None else self.default_timeout_seconds
        admitted = False

        def before_attempt(attempt: int) -> None:
            nonlocal admitted
            tally.attempts = attempt
            admitted = breaker.allow()
            if not admitted:
                raise breaker.rejection_error(operation_key)

        def after_attempt(attempt: int, error: CallError | None) -> None:
            if not admitted:
                return
            if error is None:
                breaker.on_success()
            elif error.kind.counts_against_service:
                breaker.on_failure()
            else:
                breaker.release()

        async def attempt_once() -> T:
            nonlocal admitted
            began = self.clock.monotonic()
            try:
                return await self.timeout_guard.with_timeout(operation, timeout, key=operation_key)
            except asyncio.CancelledError:
                if admitted:
                    breaker.release()
                    admitted = False
                raise
            finally:
                tally.service_time += self.clock.monotonic() - began

        return await self.retry_policy.execute(
            attempt_once,
            operation_key=operation_key,
            before_attempt=before_attempt,
            after_attempt=after_attempt,
        )

    def _settle(
        self,
        operation_key: str,
        identity: str,
        duration: float,
        error: CallError | None,
        tally: _AttemptTally,
    ) -> None:
        attempts = tally.attempts
        if error is not None and error.kind == ErrorKind.CANCELLED:
            logger.info("call.cancelled", duration=round(duration, 4))
            return

        # Only calls that reached the service say anything about its load, and
        # only time spent inside attempts counts as its latency.
        if attempts and not isinstance(error, CircuitOpenError):
            failed = error is not None and error.kind.counts_against_service
            self.rate_limiter.update_limit(identity, tally.service_time, failed)

        self.health.record(
            operation_key,
            duration,
            success=error is None,
            error_kind=error.kind if error is not None else None,
            attempt=max(attempts, 1),
        )
        if error is None:
            logger.info("call.succeeded", duration=round(duration, 4), attempts=attempts)
        else:
            logger.warning(
                "call.failed",
                duration=round(duration, 4),
                attempts=attempts,
                kind=error.kind.value,
                retryable=error.retryable,
            )

    # ── Management ───────────────────────────────────────────────────

    def get_health(self, operation_key: str | None = None) -> HealthReport:
        """Health report enriched with component snapshots."""
        report = self.health.get_report(operation_key)
        report.components = {
            "circuit_breakers": self.breakers.snapshot(),
            "rate_limits": self.rate_limiter.status(),
            "scheduler": self.scheduler.stats(),
            "cache": self.cache.stats(),
            "dedup": self.deduplicator.stats(),
            "timeouts": self.timeout_guard.snapshot(),
        }
        return report

    def invalidate_cache(self, tag_pattern: str) -> int:
        """Drop cached results carrying a tag matching ``tag_pattern`` (glob)."""
        removed = self.cache.invalidate(tag_pattern)
        logger.info("cache.invalidated", pattern=tag_pattern, removed=removed)
        return removed

    def subscribe_alerts(self, channel: Callable[[Alert], None]) -> Callable[[], None]:
        """Register an alert channel. Returns the unsubscribe function."""
        return self.alerts.subscribe(channel)

    def cancel(self, operation_key: str) -> int:
        """Withdraw queued calls for ``operation_key``; running calls continue."""
        return self.scheduler.cancel(operation_key)


__all__ = ["CallContext", "ResilientCaller", "service_for"]
