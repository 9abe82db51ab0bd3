"""Bounded linear-backoff retry for remote operations.

Every remote fetch and mutation goes through :class:`RetryExecutor`. After
failed attempt *i* (0-indexed) the executor waits ``base_delay * (i + 1)``
seconds, which is linear, not exponential. The final failure propagates
unmodified.

Example:
    >>> executor = RetryExecutor(LinearBackoff(attempts=3, base_delay=1.0))
    >>> [executor.strategy.next_delay(i) for i in range(2)]
    [1.0, 2.0]
    >>> rows = await executor.run(lambda: fetch_rows("projects"))  # doctest: +SKIP
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from syncspine.core.errors import is_retryable
from syncspine.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[Any]]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LinearBackoff:
    """Linear backoff policy.

    Delay after attempt ``i`` = ``base_delay * (i + 1)``

    Attributes:
        attempts: Total attempts, including the first call (>= 1)
        base_delay: Delay unit in seconds
    """

    attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds after the failed 0-indexed *attempt*."""
        return self.base_delay * (attempt + 1)

    def should_retry(self, attempt: int, attempts: int, error: Exception | None = None) -> bool:
        """True if 0-indexed *attempt* is not the last and *error* may be retried."""
        if attempt >= attempts - 1:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class RetryState:
    """State of one retried call. Lives only for the duration of that call."""

    attempts: int
    attempt: int = 0
    next_delay: float = 0.0
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list)

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1][1] if self.errors else None


class RetryExecutor:
    """Run zero-argument async operations with bounded linear backoff.

    Each :meth:`run` call keeps its own :class:`RetryState`, so concurrent
    calls never share attempt counters.

    Args:
        strategy: Backoff policy (default: 3 attempts, 1.0 s base delay)
        sleep: Awaitable delay function (injectable for tests)
        on_retry: Optional callback ``(attempt, error, delay)`` before each wait
    """

    def __init__(
        self,
        strategy: LinearBackoff | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ):
        self.strategy = strategy or LinearBackoff()
        self._sleep = sleep
        self._on_retry = on_retry

    async def run(self, operation: Operation[T], attempts: int | None = None) -> T:
        """Execute *operation* up to *attempts* times.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            attempts: Override the strategy's attempt cap for this call

        Returns:
            The first successful result.

        Raises:
            The last error, unmodified, once attempts are exhausted or the
            error is flagged non-retryable.
        """
        cap = attempts if attempts is not None else self.strategy.attempts
        if cap < 1:
            raise ValueError(f"attempts must be >= 1, got {cap}")

        state = RetryState(attempts=cap)
        while True:
            try:
                return await operation()
            except Exception as e:
                state.errors.append((state.attempt, e, utcnow()))

                if not self.strategy.should_retry(state.attempt, cap, e):
                    raise

                state.next_delay = self.strategy.next_delay(state.attempt)
                logger.info(
                    "retry_attempt",
                    attempt=state.attempt + 1,
                    attempts=cap,
                    delay=state.next_delay,
                    error=str(e),
                )
                if self._on_retry:
                    self._on_retry(state.attempt + 1, e, state.next_delay)

                await self._sleep(state.next_delay)
                state.attempt += 1

    # executor.retry(op, attempts=N)
    retry = run


__all__ = [
    "LinearBackoff",
    "RetryExecutor",
    "RetryState",
]
