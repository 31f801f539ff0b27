"""Concurrency scheduler — bounded worker slots with a priority admission queue.

WHY
───
Downstream services cap concurrent connections and degrade long before they
refuse outright. The scheduler keeps at most ``max_concurrent`` operations
in flight; everything else waits in a queue that drains highest priority
first and first-in-first-out within a priority.

ARCHITECTURE
────────────
::

    ConcurrencyScheduler(max_concurrent)
      ├── .schedule(operation, priority, key)  ─ enqueue + await result
      ├── ._process()                           ─ dispatch while slots free
      ├── .cancel(key)                          ─ withdraw queued tasks
      └── .stats()                              ─ running / queued / averages

    Heap order: (-priority, sequence)
      → strictly higher priority first, FIFO among equals.
      No anti-starvation: sustained high-priority load can hold low-priority
      work indefinitely.

    Slot release happens in ``finally`` on every exit path, followed by an
    immediate ``_process()`` to hand the slot to the next task.

Related modules:
    orchestrator.py — acquires a slot after rate-limit admission
    timeout.py      — bounds how long a slot can be held per attempt

Example::

    scheduler = ConcurrencyScheduler(max_concurrent=4)
    result = await scheduler.schedule(lambda: client.complete(prompt), Priority.HIGH)
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, TypeVar

from callguard.core.clock import Clock, SystemClock
from callguard.core.errors import CallCancelledError
from callguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Priority(IntEnum):
    """Named priority levels; any int is accepted, larger drains first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    REALTIME = 3


@dataclass(order=True)
class QueueTask:
    """A unit of work waiting for a slot."""

    sort_key: tuple[int, int] = field(init=False, repr=False)
    priority: int = field(compare=False)
    sequence: int = field(compare=False)
    operation: Callable[[], Awaitable[Any]] = field(compare=False, repr=False)
    enqueue_time: float = field(compare=False)
    future: asyncio.Future[Any] = field(compare=False, repr=False)
    key: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        self.sort_key = (-self.priority, self.sequence)


class ConcurrencyScheduler:
    """Bounded slots plus a priority queue, for a single event loop.

    Parameters
    ----------
    max_concurrent : int
        Maximum operations running at once.
    """

    def __init__(self, max_concurrent: int = 10, *, clock: Clock | None = None) -> None:
        if max_concurrent <= 0:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._clock = clock or SystemClock()
        self._queue: list[QueueTask] = []
        self._sequence = itertools.count()
        self._running = 0
        self._tasks: set[asyncio.Task[None]] = set()

        self._dispatched = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._average_wait_time = 0.0
        self._average_execution_time = 0.0

    # ── Scheduling ───────────────────────────────────────────────────

    async def schedule(
        self,
        operation: Callable[[], Awaitable[T]],
        priority: int = Priority.NORMAL,
        key: str | None = None,
    ) -> T:
        """Run ``operation`` once a slot is free.

        Args:
            operation: Zero-arg callable returning an awaitable.
            priority: Larger values are dispatched first.
            key: Label used by :meth:`cancel`.

        Returns:
            The operation's result.

        Raises:
            CallCancelledError: If the task was cancelled while queued.
            Exception: Whatever the operation raised.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        task = QueueTask(
            priority=int(priority),
            sequence=next(self._sequence),
            operation=operation,
            enqueue_time=self._clock.monotonic(),
            future=future,
            key=key,
        )
        heapq.heappush(self._queue, task)
        if self._running >= self._max_concurrent:
            logger.debug(
                "scheduler.queued",
                key=key,
                priority=task.priority,
                queued=len(self._queue),
                running=self._running,
            )
        self._process()

        try:
            return await future
        except asyncio.CancelledError:
            # Caller gave up while still queued: drop the task.
            if not future.done() or future.cancelled():
                self._discard(task)
            raise

    def _process(self) -> None:
        while self._running < self._max_concurrent and self._queue:
            task = heapq.heappop(self._queue)
            if task.future.done():
                continue
            self._running += 1
            self._dispatched += 1
            wait = self._clock.monotonic() - task.enqueue_time
            self._average_wait_time += (wait - self._average_wait_time) / self._dispatched
            logger.debug(
                "scheduler.dispatch",
                key=task.key,
                priority=int(task.priority),
                waited=round(wait, 3),
                running=self._running,
            )
            runner = asyncio.create_task(self._run(task))
            self._tasks.add(runner)
            runner.add_done_callback(self._tasks.discard)

    async def _run(self, task: QueueTask) -> None:
        started = self._clock.monotonic()
        try:
            result = await task.operation()
        except Exception as exc:
            self._failed += 1
            if not task.future.done():
                task.future.set_exception(exc)
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        else:
            self._completed += 1
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._running -= 1
            finished = self._completed + self._failed
            elapsed = self._clock.monotonic() - started
            if finished:
                self._average_execution_time += (
                    elapsed - self._average_execution_time
                ) / finished
            self._process()

    def _discard(self, task: QueueTask) -> None:
        try:
            self._queue.remove(task)
        except ValueError:
            return
        heapq.heapify(self._queue)

    # ── Cancellation ─────────────────────────────────────────────────

    def cancel(self, key: str) -> int:
        """Withdraw queued (not yet dispatched) tasks for ``key``.

        Their waiters receive :class:`CallCancelledError`. Running tasks are
        not affected.

        Returns:
            Number of tasks withdrawn.
        """
        withdrawn = [task for task in self._queue if task.key == key]
        if not withdrawn:
            return 0

        self._queue = [task for task in self._queue if task.key != key]
        heapq.heapify(self._queue)
        for task in withdrawn:
            if not task.future.done():
                task.future.set_exception(
                    CallCancelledError(
                        f"Queued call '{key}' was cancelled before dispatch",
                        operation_key=key,
                    )
                )
        self._cancelled += len(withdrawn)
        logger.info("scheduler.cancelled", key=key, withdrawn=len(withdrawn))
        return len(withdrawn)

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return sum(1 for task in self._queue if not task.future.done())

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def average_wait_time(self) -> float:
        return self._average_wait_time

    @property
    def average_execution_time(self) -> float:
        return self._average_execution_time

    def stats(self) -> dict[str, Any]:
        return {
            "max_concurrent": self._max_concurrent,
            "running": self._running,
            "queued": self.queued,
            "dispatched": self._dispatched,
            "completed": self._completed,
            "failed": self._failed,
            "cancelled": self._cancelled,
            "average_wait_time": round(self._average_wait_time, 6),
            "average_execution_time": round(self._average_execution_time, 6),
        }


__all__ = ["Priority", "QueueTask", "ConcurrencyScheduler"]
