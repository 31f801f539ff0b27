"""Retry policy with exponential backoff, multiplicative jitter and error classification.

Each failure is classified into an :class:`~callguard.core.errors.ErrorKind`.
Transient kinds (network, timeout, rateLimit, serverError) are retried up to
``max_retries`` times; caller-side kinds (auth, validation, contentPolicy)
surface on the spot without spending a retry.

Delay before retry *n* (1-based)::

    min(max_delay, base_delay * backoff_multiplier ** (n - 1)) * (0.5 + random() * 0.5)

The multiplicative jitter keeps concurrent callers from retrying in lockstep.

Example:
    >>> policy = RetryPolicy(max_retries=3, base_delay=0.5)
    >>> result = await policy.execute(lambda: client.fetch("trends"))
"""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from callguard.core.clock import Clock, SystemClock
from callguard.core.errors import CallError, ErrorKind, classify_error
from callguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, CallError, float], None]
AttemptHook = Callable[[int], None]
AttemptResultHook = Callable[[int, CallError | None], None]


@dataclass
class RetryPolicy:
    """Classifying retry loop.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Delay before the first retry, seconds
        max_delay: Cap on any single delay, seconds
        backoff_multiplier: Exponential growth factor
        retryable_kinds: Kinds worth another attempt
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_kinds: frozenset[ErrorKind] = frozenset(
        {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER_ERROR}
    )
    clock: Clock = field(default_factory=SystemClock, repr=False)
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")

    def next_delay(self, retry_number: int, error: CallError | None = None) -> float:
        """Delay before retry ``retry_number`` (1-based).

        A rate-limit error carrying ``retry_after`` raises the delay to at
        least that hint, still capped by ``max_delay``.
        """
        raw = min(self.max_delay, self.base_delay * self.backoff_multiplier ** (retry_number - 1))
        delay = raw * (0.5 + self.rng() * 0.5)
        if error is not None and error.kind == ErrorKind.RATE_LIMIT and error.retry_after:
            delay = min(self.max_delay, max(delay, error.retry_after))
        return delay

    def should_retry(self, error: CallError, attempt: int) -> bool:
        """Whether a failure on ``attempt`` (1-based) earns another attempt."""
        return error.retryable and error.kind in self.retryable_kinds and attempt <= self.max_retries

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_key: str | None = None,
        before_attempt: AttemptHook | None = None,
        after_attempt: AttemptResultHook | None = None,
        on_retry: OnRetry | None = None,
    ) -> T:
        """Run ``operation`` with retries.

        Args:
            operation: Zero-arg callable returning an awaitable
            operation_key: Attached to surfaced errors
            before_attempt: Called with the attempt number before each attempt;
                may raise (e.g. CircuitOpenError) to stop immediately
            after_attempt: Called with (attempt, error or None) after each attempt
            on_retry: Called with (attempt, error, delay) before sleeping

        Returns:
            Result of the first successful attempt

        Raises:
            CallError: The first non-retryable error, or the last error once
                retries are exhausted (then with ``retryable=False``)
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if before_attempt is not None:
                    before_attempt(attempt)
                result = await operation()
            except Exception as exc:
                error = classify_error(exc, operation_key)
                error.attempts = attempt
                if after_attempt is not None:
                    after_attempt(attempt, error)

                if not self.should_retry(error, attempt):
                    if error.kind.retryable and attempt > self.max_retries:
                        # Exhausted: do not invite another round from the caller.
                        error.retryable = False
                        logger.warning(
                            "retry.exhausted",
                            operation_key=operation_key,
                            attempts=attempt,
                            kind=error.kind.value,
                        )
                    if error is exc:
                        raise
                    raise error from exc

                delay = self.next_delay(attempt, error)
                logger.info(
                    "retry.scheduled",
                    operation_key=operation_key,
                    attempt=attempt,
                    kind=error.kind.value,
                    delay=round(delay, 3),
                )
                if on_retry is not None:
                    on_retry(attempt, error, delay)
                await self.clock.sleep(delay)
                continue

            if after_attempt is not None:
                after_attempt(attempt, None)
            return result


__all__ = ["RetryPolicy"]
