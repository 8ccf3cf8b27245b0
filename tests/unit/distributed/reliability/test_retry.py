"""
Tests for retry with backoff and jitter, and the bounded epoch cache.

Tests:
- Delay calculation for each jitter strategy
- RetryExecutor retries only retryable errors and honours max_attempts
- EpochCache keeps the highest epoch and evicts least recently used keys
"""

import pytest

from hyperplane.distributed.errors import (
    EpochStaleError,
    TransportUnavailableError,
)
from hyperplane.distributed.reliability import (
    EpochCache,
    JitterStrategy,
    RetryConfig,
    RetryExecutor,
    add_jitter,
    calculate_jittered_delay,
)


# =============================================================================
# Delay Calculation Tests
# =============================================================================


class TestJitteredDelay:
    """Test backoff delay calculation."""

    def test_no_jitter_is_exponential_and_capped(self) -> None:
        delays = [
            calculate_jittered_delay(attempt, base_delay=0.5, max_delay=3.0, jitter=JitterStrategy.NONE)
            for attempt in range(5)
        ]
        assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_full_jitter_bounds(self) -> None:
        for _ in range(200):
            delay = calculate_jittered_delay(3, base_delay=0.5, max_delay=30.0, jitter=JitterStrategy.FULL)
            assert 0.0 <= delay <= 4.0

    def test_equal_jitter_keeps_half(self) -> None:
        for _ in range(200):
            delay = calculate_jittered_delay(2, base_delay=0.5, max_delay=30.0, jitter=JitterStrategy.EQUAL)
            assert 1.0 <= delay <= 2.0

    def test_add_jitter_spread(self) -> None:
        for _ in range(200):
            assert 4.5 <= add_jitter(5.0, jitter_factor=0.1) <= 5.5

    def test_decorrelated_delays_stay_within_cap(self) -> None:
        executor = RetryExecutor(
            RetryConfig(base_delay=0.1, max_delay=1.0, jitter=JitterStrategy.DECORRELATED)
        )

        for attempt in range(20):
            delay = executor.calculate_delay(attempt)
            assert 0.1 <= delay <= 1.0


# =============================================================================
# RetryExecutor Tests
# =============================================================================


class TestRetryExecutor:
    """Test retrying async operations."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        calls = 0
        retries: list[int] = []

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise TransportUnavailableError("session.status")
            return "ok"

        async def on_retry(name: str, attempt: int, error: Exception, delay: float) -> None:
            retries.append(attempt)

        executor = RetryExecutor(
            RetryConfig(max_attempts=5, base_delay=0.001, max_delay=0.002),
            on_retry=on_retry,
        )

        assert await executor.execute(flaky, operation_name="publish") == "ok"
        assert calls == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_reraise(self) -> None:
        calls = 0

        async def down() -> None:
            nonlocal calls
            calls += 1
            raise TransportUnavailableError("session.status")

        executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay=0.001, max_delay=0.002))

        with pytest.raises(TransportUnavailableError):
            await executor.execute(down)

        assert calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate_immediately(self) -> None:
        calls = 0

        async def stale() -> None:
            nonlocal calls
            calls += 1
            raise EpochStaleError("s1", 1, 2)

        executor = RetryExecutor(RetryConfig(max_attempts=5, base_delay=0.001))

        with pytest.raises(EpochStaleError):
            await executor.execute(stale)

        assert calls == 1


# =============================================================================
# EpochCache Tests
# =============================================================================


class TestEpochCache:
    """Test the bounded high-water cache."""

    def test_observe_never_lowers(self) -> None:
        cache = EpochCache(4)

        assert cache.observe("s1", 3) == 3
        assert cache.observe("s1", 2) == 3
        assert cache.get("s1") == 3
        assert cache.get("unknown") == 0

    def test_evicts_least_recently_used(self) -> None:
        cache = EpochCache(2)
        cache.observe("s1", 1)
        cache.observe("s2", 1)
        cache.get("s1")
        cache.observe("s3", 1)

        assert "s1" in cache
        assert "s2" not in cache
        assert len(cache) == 2

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            EpochCache(0)
