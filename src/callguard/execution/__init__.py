"""callguard execution — the guards around every outbound call.

ARCHITECTURE
────────────
::

    ResilientCaller (orchestrator.py)
      ├── TTLCache              ─ cache.py
      ├── RequestDeduplicator   ─ dedup.py
      ├── AdaptiveRateLimiter   ─ rate_limit.py
      ├── ConcurrencyScheduler  ─ scheduler.py
      ├── CircuitBreakerRegistry─ circuit_breaker.py
      ├── RetryPolicy           ─ retry.py
      ├── TimeoutGuard          ─ timeout.py
      └── HealthMonitor         ─ health.py

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. cache.py            ─ TTL + LRU + tag invalidation
  2. dedup.py            ─ one in-flight call per key
  3. rate_limit.py       ─ sliding window with adaptive limit
  4. scheduler.py        ─ priority queue over a slot pool
  5. circuit_breaker.py  ─ fail fast on a broken service
  6. retry.py            ─ classified retries with jittered backoff
  7. timeout.py          ─ per-attempt deadline, orphan registry
  8. health.py           ─ rolling stats and threshold alerts
  9. orchestrator.py     ─ ResilientCaller.execute
"""

from callguard.execution.cache import MISS, CacheEntry, CacheStats, TTLCache
from callguard.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from callguard.execution.dedup import InFlightEntry, RequestDeduplicator, make_key
from callguard.execution.health import (
    CallRecord,
    HealthMonitor,
    HealthReport,
    HealthStatus,
    HealthThresholds,
    OperationHealth,
)
from callguard.execution.orchestrator import CallContext, ResilientCaller
from callguard.execution.rate_limit import AdaptiveRateLimiter, RateDecision, RateWindow
from callguard.execution.retry import RetryPolicy
from callguard.execution.scheduler import ConcurrencyScheduler, Priority, QueueTask
from callguard.execution.timeout import OrphanedOperation, TimeoutGuard

__all__ = [
    # Cache
    "MISS",
    "CacheEntry",
    "CacheStats",
    "TTLCache",
    # Dedup
    "InFlightEntry",
    "RequestDeduplicator",
    "make_key",
    # Rate limiting
    "AdaptiveRateLimiter",
    "RateDecision",
    "RateWindow",
    # Scheduling
    "ConcurrencyScheduler",
    "Priority",
    "QueueTask",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    # Retry / timeout
    "RetryPolicy",
    "OrphanedOperation",
    "TimeoutGuard",
    # Health
    "CallRecord",
    "HealthMonitor",
    "HealthReport",
    "HealthStatus",
    "HealthThresholds",
    "OperationHealth",
    # Orchestrator
    "CallContext",
    "ResilientCaller",
]
