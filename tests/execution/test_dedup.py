"""Tests for RequestDeduplicator — one in-flight execution per key."""

from __future__ import annotations

import asyncio

import pytest

from callguard.execution.dedup import RequestDeduplicator, make_key
from callguard.testing import CountingOperation


class TestMakeKey:
    def test_no_params(self):
        assert make_key("news:top") == "news:top"

    def test_param_order_irrelevant(self):
        assert make_key("search", {"q": "x", "page": 1}) == make_key("search", {"page": 1, "q": "x"})

    def test_different_params_differ(self):
        assert make_key("search", {"q": "x"}) != make_key("search", {"q": "y"})


class TestDedupe:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        """Two concurrent dedupe("x") with a 50ms factory: one invocation, same value."""
        dedup = RequestDeduplicator()
        op = CountingOperation(result={"trend": "ai"}, delay=0.05)

        a, b = await asyncio.gather(dedup.dedupe("x", op), dedup.dedupe("x", op))

        assert a == b == {"trend": "ai"}
        assert a is b
        assert op.calls == 1
        assert dedup.stats() == {"in_flight": 0, "executions": 1, "joins": 1}

    @pytest.mark.asyncio
    async def test_many_subscribers(self):
        dedup = RequestDeduplicator()
        op = CountingOperation(result=42, delay=0.02)
        results = await asyncio.gather(*(dedup.dedupe("k", op) for _ in range(10)))
        assert results == [42] * 10
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator()
        op = CountingOperation(delay=0.01)
        await asyncio.gather(dedup.dedupe("a", op), dedup.dedupe("b", op))
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_sequential_calls_are_not_deduplicated(self):
        dedup = RequestDeduplicator()
        op = CountingOperation()
        await dedup.dedupe("k", op)
        await dedup.dedupe("k", op)
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_failure_reaches_every_subscriber(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise ConnectionError("down")

        results = await asyncio.gather(
            dedup.dedupe("k", failing), dedup.dedupe("k", failing), return_exceptions=True
        )
        assert calls == 1
        assert all(isinstance(r, ConnectionError) for r in results)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_entry_removed_before_subscribers_resume(self):
        dedup = RequestDeduplicator()
        op = CountingOperation(delay=0.01)

        task = asyncio.ensure_future(dedup.dedupe("k", op))
        await asyncio.sleep(0)
        assert dedup.in_flight("k") is not None
        assert dedup.in_flight_count == 1

        await task
        assert dedup.in_flight("k") is None
        assert dedup.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_subscriber_does_not_cancel_shared_operation(self):
        dedup = RequestDeduplicator()
        op = CountingOperation(result="done", delay=0.05)

        first = asyncio.ensure_future(dedup.dedupe("k", op))
        second = asyncio.ensure_future(dedup.dedupe("k", op))
        await asyncio.sleep(0.01)
        first.cancel()

        assert await second == "done"
        assert first.cancelled()
        assert op.calls == 1
