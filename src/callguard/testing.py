"""Test harness — deterministic time and operation doubles.

Manifesto:
Resilience behaviour is all about time: cooldowns, TTLs, backoff delays,
sliding windows. Waiting for real seconds in tests is slow and flaky, so
every callguard component takes a ``clock``; pass a :class:`ManualClock`
and move time explicitly.

ARCHITECTURE
────────────
::

    ManualClock          → monotonic() returns a settable value;
                           sleep() advances it and yields once
    CountingOperation    → async callable counting invocations,
                           returns a fixed value (optionally after a delay)
    FlakyOperation       → raises the scripted errors in order, then succeeds

Example::

    from callguard.testing import FlakyOperation, ManualClock

    clock = ManualClock()
    policy = RetryPolicy(max_retries=3, clock=clock)
    op = FlakyOperation([ConnectionError("reset"), ConnectionError("reset")], result="ok")
    assert await policy.execute(op) == "ok"
    assert op.calls == 3
    assert len(clock.sleeps) == 2

Tags:
    callguard, testing, harness, clock
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any


class ManualClock:
    """Clock whose time only moves when told to.

    ``sleep`` advances time by the requested amount and yields to the event
    loop once, so retry backoff completes instantly while still letting
    other tasks run.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("time cannot go backwards")
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self._now += seconds
        await asyncio.sleep(0)


class CountingOperation:
    """Async operation that counts its invocations.

    Args:
        result: Value returned by every call
        delay: Real seconds to wait before returning (``asyncio.sleep``)
    """

    def __init__(self, result: Any = "ok", *, delay: float = 0.0) -> None:
        self.result = result
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def __call__(self) -> Any:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.result
        finally:
            self.active -= 1


class FlakyOperation(CountingOperation):
    """Raises each scripted error in turn, then returns ``result``."""

    def __init__(self, errors: Iterable[BaseException], result: Any = "ok", *, delay: float = 0.0) -> None:
        super().__init__(result, delay=delay)
        self._errors = list(errors)

    @property
    def remaining_errors(self) -> int:
        return len(self._errors)

    async def __call__(self) -> Any:
        if self._errors:
            self.calls += 1
            raise self._errors.pop(0)
        return await super().__call__()


class FailingOperation(CountingOperation):
    """Raises a fresh copy of the same error on every call."""

    def __init__(self, error_factory: Any) -> None:
        super().__init__(None)
        self._error_factory = error_factory

    async def __call__(self) -> Any:
        self.calls += 1
        raise self._error_factory()


__all__ = ["ManualClock", "CountingOperation", "FlakyOperation", "FailingOperation"]
