"""
Tests for syncspine.core.retry module.

Covers:
- LinearBackoff delay schedule and validation
- RetryExecutor bound: at most N calls, final error propagated unmodified
- Non-retryable SyncErrors fail on the first attempt
- Independent concurrent calls do not share attempt counters
"""

import asyncio

import pytest

from syncspine.core.errors import RemoteRejectedError, TransientRemoteError
from syncspine.core.retry import LinearBackoff, RetryExecutor


class Flaky:
    """Operation that fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error: Exception | None = None, value="ok"):
        self.failures = failures
        self.error = error or ConnectionError("boom")
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class TestLinearBackoff:
    def test_default_policy(self):
        policy = LinearBackoff()
        assert policy.attempts == 3
        assert policy.base_delay == 1.0

    def test_delays_are_linear(self):
        policy = LinearBackoff(attempts=5, base_delay=1.0)
        assert [policy.next_delay(i) for i in range(4)] == [1.0, 2.0, 3.0, 4.0]

    def test_should_retry_stops_at_last_attempt(self):
        policy = LinearBackoff(attempts=3)
        assert policy.should_retry(0, 3)
        assert policy.should_retry(1, 3)
        assert not policy.should_retry(2, 3)

    def test_should_retry_respects_retryable_flag(self):
        policy = LinearBackoff()
        assert policy.should_retry(0, 3, TransientRemoteError("503"))
        assert not policy.should_retry(0, 3, RemoteRejectedError("dup"))
        assert policy.should_retry(0, 3, ValueError("plain"))

    @pytest.mark.parametrize("kwargs", [{"attempts": 0}, {"base_delay": -1}])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            LinearBackoff(**kwargs)


class TestRetryExecutor:
    """Bounded retry with linear backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try_does_not_retry(self, sleeper):
        op = Flaky(failures=0)
        executor = RetryExecutor(sleep=sleeper)

        assert await executor.run(op) == "ok"
        assert op.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, sleeper):
        op = Flaky(failures=2)
        executor = RetryExecutor(sleep=sleeper)

        assert await executor.run(op) == "ok"
        assert op.calls == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_always_failing_operation_called_exactly_n_times(self, sleeper):
        """Three calls, waits of 1 s and 2 s, and the third error propagates."""
        errors = [ConnectionError(f"attempt {i}") for i in range(3)]
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise errors[calls - 1]

        executor = RetryExecutor(LinearBackoff(attempts=3, base_delay=1.0), sleep=sleeper)
        with pytest.raises(ConnectionError) as exc_info:
            await executor.run(op)

        assert calls == 3
        assert sleeper.delays == [1.0, 2.0]
        assert exc_info.value is errors[2]

    @pytest.mark.asyncio
    async def test_attempts_override(self, sleeper):
        op = Flaky(failures=10)
        executor = RetryExecutor(sleep=sleeper)

        with pytest.raises(ConnectionError):
            await executor.retry(op, attempts=5)
        assert op.calls == 5
        assert sleeper.delays == [1.0, 2.0, 3.0, 4.0]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self, sleeper):
        op = Flaky(failures=1)
        with pytest.raises(ConnectionError):
            await RetryExecutor(sleep=sleeper).run(op, attempts=1)
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self, sleeper):
        with pytest.raises(ValueError):
            await RetryExecutor(sleep=sleeper).run(Flaky(0), attempts=0)

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self, sleeper):
        error = RemoteRejectedError("duplicate key", code="23505")
        op = Flaky(failures=5, error=error)

        with pytest.raises(RemoteRejectedError) as exc_info:
            await RetryExecutor(sleep=sleeper).run(op)

        assert exc_info.value is error
        assert op.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, sleeper):
        seen = []
        executor = RetryExecutor(
            sleep=sleeper,
            on_retry=lambda attempt, error, delay: seen.append((attempt, str(error), delay)),
        )
        await executor.run(Flaky(failures=2))
        assert seen == [(1, "boom", 1.0), (2, "boom", 2.0)]

    @pytest.mark.asyncio
    async def test_concurrent_calls_have_independent_counters(self):
        """Two interleaved calls each get their own full attempt budget."""

        async def yielding_sleep(delay):
            await asyncio.sleep(0)

        executor = RetryExecutor(sleep=yielding_sleep)
        first = Flaky(failures=2, value="a")
        second = Flaky(failures=2, value="b")

        results = await asyncio.gather(executor.run(first), executor.run(second))

        assert results == ["a", "b"]
        assert first.calls == 3
        assert second.calls == 3
