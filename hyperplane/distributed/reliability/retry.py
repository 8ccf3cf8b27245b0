"""
Retry helpers with exponential backoff and jitter.

Used for channel publishes, certificate issuance and workload
restarts. Jitter keeps drones that lose the channel at the same time
from retrying in lockstep.
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from hyperplane.distributed.errors import TransportUnavailableError

T = TypeVar("T")


class JitterStrategy(Enum):
    """
    FULL: delay = random(0, min(cap, base * 2^attempt))
    EQUAL: half of the capped delay is fixed, the other half random
    DECORRELATED: delay = random(base, previous_delay * 3), capped
    NONE: delay = min(cap, base * 2^attempt)
    """

    FULL = "full"
    EQUAL = "equal"
    DECORRELATED = "decorrelated"
    NONE = "none"


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: JitterStrategy = JitterStrategy.FULL
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (
            TransportUnavailableError,
            ConnectionError,
            TimeoutError,
        )
    )


def calculate_jittered_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    jitter: JitterStrategy = JitterStrategy.FULL,
) -> float:
    """
    Delay before retry number ``attempt`` (zero-based).
    """
    capped = min(max_delay, base_delay * (2**attempt))

    if jitter == JitterStrategy.FULL:
        return random.uniform(0, capped)

    elif jitter == JitterStrategy.EQUAL:
        return capped / 2 + random.uniform(0, capped / 2)

    elif jitter == JitterStrategy.DECORRELATED:
        # Stateless callers have no previous delay to build on.
        return random.uniform(0, capped)

    return capped


def add_jitter(interval: float, jitter_factor: float = 0.1) -> float:
    """
    Spread a fixed interval by up to ``jitter_factor`` in either
    direction, e.g. a 5s heartbeat with 0.1 lands in 4.5s-5.5s.
    """
    spread = interval * jitter_factor
    return interval + random.uniform(-spread, spread)


class RetryExecutor:
    """
    Runs an async operation, retrying retryable failures.

        executor = RetryExecutor(RetryConfig(max_attempts=5))
        await executor.execute(
            lambda: channel.publish(subject, payload),
            operation_name="publish",
        )

    The last exception propagates once attempts are exhausted.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        on_retry: Callable[[str, int, Exception, float], Awaitable[None]] | None = None,
    ):
        self._config = config or RetryConfig()
        self._on_retry = on_retry
        self._previous_delay = self._config.base_delay

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        if self._config.jitter == JitterStrategy.DECORRELATED:
            delay = random.uniform(
                self._config.base_delay,
                self._previous_delay * 3,
            )
            self._previous_delay = min(self._config.max_delay, delay)
            return self._previous_delay

        return calculate_jittered_delay(
            attempt,
            base_delay=self._config.base_delay,
            max_delay=self._config.max_delay,
            jitter=self._config.jitter,
        )

    def is_retryable(self, exc: Exception) -> bool:
        return isinstance(exc, self._config.retryable_exceptions)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        attempts = max(1, self._config.max_attempts)
        self._previous_delay = self._config.base_delay

        for attempt in range(attempts):
            try:
                return await operation()

            except Exception as exc:
                if not self.is_retryable(exc) or attempt >= attempts - 1:
                    raise

                delay = self.calculate_delay(attempt)
                if self._on_retry is not None:
                    await self._on_retry(operation_name, attempt + 1, exc, delay)

                await asyncio.sleep(delay)

        raise RuntimeError(f"{operation_name} failed without exception")
