"""Tests for ConcurrencyScheduler — bounded slots and priority ordering."""

from __future__ import annotations

import asyncio

import pytest

from callguard.core.errors import CallCancelledError
from callguard.execution.scheduler import ConcurrencyScheduler, Priority, QueueTask
from callguard.testing import CountingOperation


class TestQueueTask:
    def test_ordering_priority_then_fifo(self):
        loop = asyncio.new_event_loop()
        try:
            def make(priority, sequence):
                return QueueTask(
                    priority=priority,
                    sequence=sequence,
                    operation=None,
                    enqueue_time=0.0,
                    future=loop.create_future(),
                )

            tasks = sorted([make(1, 0), make(3, 1), make(1, 2), make(0, 3)])
            assert [(t.priority, t.sequence) for t in tasks] == [(3, 1), (1, 0), (1, 2), (0, 3)]
        finally:
            loop.close()


class TestSchedule:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        scheduler = ConcurrencyScheduler(2)
        assert await scheduler.schedule(CountingOperation(result=7)) == 7

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        scheduler = ConcurrencyScheduler(2)
        op = CountingOperation(delay=0.02)
        await asyncio.gather(*(scheduler.schedule(op) for _ in range(6)))
        assert op.calls == 6
        assert op.max_active == 2
        assert scheduler.running == 0
        assert scheduler.queued == 0

    @pytest.mark.asyncio
    async def test_priority_order(self):
        scheduler = ConcurrencyScheduler(1)
        order: list[str] = []
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        def record(name):
            async def op():
                order.append(name)
            return op

        first = asyncio.ensure_future(scheduler.schedule(blocker))
        await asyncio.sleep(0)
        queued = [
            asyncio.ensure_future(scheduler.schedule(record("low"), Priority.LOW)),
            asyncio.ensure_future(scheduler.schedule(record("normal-1"), Priority.NORMAL)),
            asyncio.ensure_future(scheduler.schedule(record("realtime"), Priority.REALTIME)),
            asyncio.ensure_future(scheduler.schedule(record("normal-2"), Priority.NORMAL)),
            asyncio.ensure_future(scheduler.schedule(record("high"), Priority.HIGH)),
        ]
        await asyncio.sleep(0)
        assert scheduler.queued == 5

        gate.set()
        await asyncio.gather(first, *queued)
        assert order == ["realtime", "high", "normal-1", "normal-2", "low"]

    @pytest.mark.asyncio
    async def test_slot_released_on_failure(self):
        scheduler = ConcurrencyScheduler(1)

        async def boom():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await scheduler.schedule(boom)
        assert scheduler.running == 0
        assert await scheduler.schedule(CountingOperation(result="next")) == "next"
        assert scheduler.stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_running_tasks_held_until_done(self):
        scheduler = ConcurrencyScheduler(2)
        gate = asyncio.Event()

        async def held():
            await gate.wait()
            return "done"

        waiters = [asyncio.ensure_future(scheduler.schedule(held)) for _ in range(2)]
        await asyncio.sleep(0)
        assert scheduler.running == 2
        assert len(scheduler._tasks) == 2

        gate.set()
        assert await asyncio.gather(*waiters) == ["done", "done"]
        for _ in range(3):
            await asyncio.sleep(0)
        assert scheduler._tasks == set()

    def test_invalid_max_concurrent(self):
        with pytest.raises(ValueError):
            ConcurrencyScheduler(0)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_queued_by_key(self):
        scheduler = ConcurrencyScheduler(1)
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()
            return "ran"

        running = asyncio.ensure_future(scheduler.schedule(blocker, key="news:top"))
        queued = asyncio.ensure_future(scheduler.schedule(CountingOperation(), key="news:top"))
        other = asyncio.ensure_future(scheduler.schedule(CountingOperation(result="other"), key="ai:chat"))
        await asyncio.sleep(0)

        assert scheduler.cancel("news:top") == 1
        with pytest.raises(CallCancelledError):
            await queued

        gate.set()
        assert await running == "ran"
        assert await other == "other"
        assert scheduler.stats()["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_cancel_unknown_key(self):
        assert ConcurrencyScheduler(1).cancel("nothing") == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        scheduler = ConcurrencyScheduler(1)
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        op = CountingOperation()
        running = asyncio.ensure_future(scheduler.schedule(blocker))
        waiter = asyncio.ensure_future(scheduler.schedule(op))
        await asyncio.sleep(0)
        assert scheduler.queued == 1

        waiter.cancel()
        await asyncio.sleep(0)
        assert scheduler.queued == 0

        gate.set()
        await running
        assert op.calls == 0


class TestStats:
    @pytest.mark.asyncio
    async def test_wait_time_tracked(self, clock):
        scheduler = ConcurrencyScheduler(1, clock=clock)
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        first = asyncio.ensure_future(scheduler.schedule(blocker))
        second = asyncio.ensure_future(scheduler.schedule(CountingOperation()))
        await asyncio.sleep(0)
        clock.advance(4.0)
        gate.set()
        await asyncio.gather(first, second)

        assert scheduler.average_wait_time == pytest.approx(2.0)
        assert scheduler.stats()["dispatched"] == 2
