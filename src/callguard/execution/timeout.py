"""Timeout guard — a deadline per attempt, with a registry of orphaned work.

Manifesto:
    Operations without timeouts are a reliability anti-pattern: a hung
    upstream call holds a worker slot forever and stalls everything queued
    behind it.

    The guard races the operation against a timer. When the timer wins the
    caller gets an :class:`~callguard.core.errors.OperationTimeoutError`
    straight away. The operation itself is *not* cancelled by default; it is
    parked in ``active_timeouts`` so it stays visible in diagnostics, and is
    dropped from there (its result discarded) once it finally settles.

Architecture:
    ::

        with_timeout(operation, seconds, key)
              │
              ├── task = ensure_future(operation())
              ├── asyncio.wait({task}, timeout=seconds)
              │
              ├── done     → return task.result() / raise its exception
              └── pending  → active_timeouts[id] = OrphanedOperation
                             task.add_done_callback(forget + discard)
                             raise OperationTimeoutError

Examples:
    >>> guard = TimeoutGuard()
    >>> data = await guard.with_timeout(lambda: fetch_trends(), 10.0, key="trends:us")

Tags:
    timeout, deadline, resilience, callguard
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from callguard.core.clock import Clock, SystemClock
from callguard.core.errors import OperationTimeoutError
from callguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class OrphanedOperation:
    """An operation we stopped waiting for but which is still running."""

    id: int
    key: str
    timeout_seconds: float
    started_at: float
    timed_out_at: float
    task: asyncio.Future[Any]

    def to_dict(self, now: float) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "timeout_seconds": self.timeout_seconds,
            "running_for": round(now - self.started_at, 3),
        }


class TimeoutGuard:
    """Enforces a deadline per attempt and tracks operations that outlived it.

    Parameters
    ----------
    cancel_on_timeout : bool
        Cancel the orphaned task instead of letting it run to completion
        (default False).
    """

    def __init__(self, *, cancel_on_timeout: bool = False, clock: Clock | None = None) -> None:
        self._cancel_on_timeout = cancel_on_timeout
        self._clock = clock or SystemClock()
        self._active: dict[int, OrphanedOperation] = {}
        self._ids = itertools.count(1)
        self._timeouts = 0

    async def with_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        seconds: float | None,
        key: str = "operation",
    ) -> T:
        """Run ``operation`` and give up waiting after ``seconds``.

        Args:
            operation: Zero-arg callable returning an awaitable
            seconds: Deadline; ``None`` or ``<= 0`` means wait indefinitely
            key: Label used in the error and the orphan registry

        Raises:
            OperationTimeoutError: If the deadline passes first
        """
        if seconds is None or seconds <= 0:
            return await operation()

        started_at = self._clock.monotonic()
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=seconds)
        except asyncio.CancelledError:
            # Our caller went away; the operation goes with it.
            task.cancel()
            raise

        if task in done:
            return task.result()

        self._timeouts += 1
        orphan = OrphanedOperation(
            id=next(self._ids),
            key=key,
            timeout_seconds=seconds,
            started_at=started_at,
            timed_out_at=self._clock.monotonic(),
            task=task,
        )
        self._active[orphan.id] = orphan
        task.add_done_callback(lambda fut, orphan_id=orphan.id: self._settle(orphan_id, fut))

        logger.warning(
            "timeout.expired",
            key=key,
            timeout_seconds=seconds,
            orphaned=len(self._active),
            cancelled=self._cancel_on_timeout,
        )
        if self._cancel_on_timeout:
            task.cancel()

        raise OperationTimeoutError(
            f"Operation '{key}' timed out after {seconds}s",
            timeout=seconds,
            operation_key=key,
        )

    def _settle(self, orphan_id: int, fut: asyncio.Future[Any]) -> None:
        orphan = self._active.pop(orphan_id, None)
        # Late result or error is discarded; retrieve it so asyncio does not warn.
        if not fut.cancelled():
            fut.exception()
        if orphan is not None:
            logger.debug(
                "timeout.orphan_settled",
                key=orphan.key,
                late_by=round(self._clock.monotonic() - orphan.timed_out_at, 3),
            )

    @property
    def active_timeouts(self) -> dict[int, OrphanedOperation]:
        """Read-only view of operations still running past their deadline."""
        return dict(self._active)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def snapshot(self) -> dict[str, Any]:
        now = self._clock.monotonic()
        return {
            "total_timeouts": self._timeouts,
            "active": [orphan.to_dict(now) for orphan in self._active.values()],
        }


__all__ = ["OrphanedOperation", "TimeoutGuard"]
