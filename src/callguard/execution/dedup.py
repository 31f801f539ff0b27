"""Request deduplication — collapse concurrent identical calls.

WHY
───
Ten users opening the same trending page at once should cost one upstream
call, not ten. The first caller for a key starts the operation; everyone
else arriving before it settles awaits the same future and gets the same
result (or the same error — a failure is not retried once per subscriber).

ARCHITECTURE
────────────
::

    RequestDeduplicator
      ├── dict[key, InFlightEntry]     ─ at most one entry per key
      ├── .dedupe(key, factory)        ─ run-or-join
      └── .in_flight(key) / .stats()

    Entry lifetime: created on first dedupe(key), removed inside the shared
    task's ``finally`` — i.e. before any subscriber sees the outcome.

Example::

    dedup = RequestDeduplicator()
    a, b = await asyncio.gather(
        dedup.dedupe("x", lambda: fetch("x")),
        dedup.dedupe("x", lambda: fetch("x")),
    )
    # fetch ran once; a == b
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from callguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def make_key(name: str, params: dict[str, Any] | None = None) -> str:
    """Derive a stable dedup/cache key from an operation name and parameters."""
    if not params:
        return name
    normalized = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]
    return f"{name}:{digest}"


@dataclass
class InFlightEntry:
    """One shared in-flight operation."""

    key: str
    future: asyncio.Future[Any] | None = None
    subscriber_count: int = 1


class RequestDeduplicator:
    """Shares one in-flight execution among concurrent callers of the same key."""

    def __init__(self) -> None:
        self._in_flight: dict[str, InFlightEntry] = {}
        self._executions = 0
        self._joins = 0

    async def dedupe(self, key: str, operation_factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation_factory`` once per key among concurrent callers.

        Args:
            key: Identity of the request (see :func:`make_key`).
            operation_factory: Zero-arg callable returning an awaitable. Only
                invoked when no entry for ``key`` is in flight.

        Returns:
            The shared result.

        Raises:
            Whatever the shared operation raised, identically for every subscriber.
        """
        entry = self._in_flight.get(key)
        if entry is not None:
            entry.subscriber_count += 1
            self._joins += 1
            logger.debug("dedup.join", key=key, subscribers=entry.subscriber_count)
            return await asyncio.shield(entry.future)

        entry = InFlightEntry(key=key)
        self._in_flight[key] = entry
        self._executions += 1

        task = asyncio.ensure_future(self._run(entry, operation_factory))
        task.add_done_callback(_consume_outcome)
        entry.future = task
        return await asyncio.shield(task)

    async def _run(self, entry: InFlightEntry, operation_factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation_factory()
        finally:
            if self._in_flight.get(entry.key) is entry:
                del self._in_flight[entry.key]

    def in_flight(self, key: str) -> InFlightEntry | None:
        return self._in_flight.get(key)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def stats(self) -> dict[str, int]:
        return {
            "in_flight": len(self._in_flight),
            "executions": self._executions,
            "joins": self._joins,
        }


def _consume_outcome(future: asyncio.Future[Any]) -> None:
    # Every subscriber may have been cancelled; mark the exception retrieved.
    if not future.cancelled():
        future.exception()


__all__ = ["InFlightEntry", "RequestDeduplicator", "make_key"]
