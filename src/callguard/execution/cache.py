"""
Result cache with per-entry TTL, LRU bound and tag invalidation.

Manifesto:
    The cheapest outbound call is the one never made. Results of successful
    calls are kept for a TTL and thrown away early when upstream data is known
    to be stale (a content edit invalidates ``content:42``-tagged entries).

    - **Lazy expiry:** ``get`` drops an expired entry and reports a miss
    - **Eager sweep:** ``sweep`` (or the background sweeper) reclaims the rest
    - **Bounded:** least-recently-used entries are evicted past ``max_entries``
    - **Tag patterns:** ``invalidate("user:7:*")`` uses glob matching

Architecture:
    ::

        TTLCache
          ├── OrderedDict[key, CacheEntry]   ─ order == recency (LRU first)
          ├── get(key) → value | MISS
          ├── set(key, value, ttl_seconds, tags)
          ├── invalidate(tag_pattern) → removed count
          ├── sweep() → expired count
          └── start_sweeper(interval) / stop_sweeper()

Examples:
    >>> cache = TTLCache(max_entries=500, default_ttl_seconds=60)
    >>> cache.set("news:top", ["a", "b"], tags=["news"])
    >>> cache.get("news:top")
    ['a', 'b']
    >>> cache.invalidate("news*")
    1
    >>> cache.get("news:top") is MISS
    True

Guardrails:
    ❌ DON'T: Test results with ``is None`` (None is a cacheable value)
    ✅ DO: Compare against ``MISS``

Tags:
    cache, ttl, lru, invalidation, callguard
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Final

from callguard.core.clock import Clock, SystemClock
from callguard.core.logging import get_logger

logger = get_logger(__name__)


class _Miss:
    """Sentinel type for a cache miss."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS: Final = _Miss()


@dataclass
class CacheEntry:
    """A cached value and its bookkeeping."""

    key: str
    value: Any
    created_at: float
    ttl_seconds: float | None
    access_count: int = 0
    last_access_at: float | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def expires_at(self) -> float | None:
        if self.ttl_seconds is None:
            return None
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and now >= expires_at

    def matches(self, tag_pattern: str) -> bool:
        return any(fnmatch.fnmatchcase(tag, tag_pattern) for tag in self.tags)


@dataclass
class CacheStats:
    """Counters for observability."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class TTLCache:
    """Bounded in-memory cache with per-entry TTL and tags.

    Attributes:
        max_entries: Maximum number of keys before LRU eviction.
        default_ttl_seconds: TTL used when ``set`` is given none
            (``None`` → no expiry).
    """

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        default_ttl_seconds: float | None = 300.0,
        clock: Clock | None = None,
    ):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_entries = max_entries
        self._default_ttl = default_ttl_seconds
        self._clock = clock or SystemClock()
        self._stats = CacheStats()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISS`` if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return MISS

        now = self._clock.monotonic()
        if entry.is_expired(now):
            self._remove(key)
            self._stats.expirations += 1
            self._stats.misses += 1
            return MISS

        entry.access_count += 1
        entry.last_access_at = now
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Store ``value`` under ``key``.

        Args:
            key: Cache key.
            value: Any value, ``None`` included.
            ttl_seconds: Time-to-live; ``None`` → default TTL.
            tags: Labels used by :meth:`invalidate`.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        now = self._clock.monotonic()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            ttl_seconds=ttl,
            last_access_at=now,
            tags=tuple(tags),
        )
        self._entries.move_to_end(key)

        while len(self._entries) > self._max_entries:
            lru_key, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("cache.evict", key=lru_key)

    def invalidate(self, tag_pattern: str) -> int:
        """Remove every entry with a tag matching the glob ``tag_pattern``.

        Returns:
            Number of entries removed.
        """
        doomed = [key for key, entry in self._entries.items() if entry.matches(tag_pattern)]
        for key in doomed:
            self._remove(key)
        self._stats.invalidations += len(doomed)
        if doomed:
            logger.info("cache.invalidate", pattern=tag_pattern, removed=len(doomed))
        return len(doomed)

    def sweep(self) -> int:
        """Eagerly drop all expired entries. Returns the count removed."""
        now = self._clock.monotonic()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._stats.expirations += len(expired)
        if expired:
            logger.debug("cache.sweep", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        return self._remove(key)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def entry(self, key: str) -> CacheEntry | None:
        """Peek at the raw entry without touching LRU order or counters."""
        return self._entries.get(key)

    def _remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock.monotonic())

    # ── Background sweeper ───────────────────────────────────────────

    def start_sweeper(self, interval_seconds: float) -> None:
        """Run :meth:`sweep` every ``interval_seconds`` on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                self.sweep()

        self._sweeper = asyncio.get_running_loop().create_task(_loop())

    async def stop_sweeper(self) -> None:
        """Stop the background sweeper if it is running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    # ── Inspection ───────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate": round(self._stats.hit_rate, 4),
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
            "invalidations": self._stats.invalidations,
        }


__all__ = ["MISS", "CacheEntry", "CacheStats", "TTLCache"]
