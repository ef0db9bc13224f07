"""Between-page pacing for bulk transfers.

Bulk operations call ``await pacer.wait()`` between listing pages so a
large job does not exhaust the upstream's request budget. Pacers also
accept throttling signals from the store (``throttled(retry_after)``):
the next ``wait()`` then sleeps at least that long.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Backoff used when the store throttles without a Retry-After hint.
_DEFAULT_THROTTLE_BACKOFF = 1.0
_MAX_THROTTLE_BACKOFF = 30.0


class Pacer(Protocol):
    async def wait(self) -> None:
        """Sleep until the next page may be fetched."""
        ...

    def throttled(self, retry_after: float | None = None) -> None:
        """Record an upstream throttling signal."""
        ...


class _ThrottleMemory:
    """Tracks pending backoff from throttling signals.

    Consecutive signals without a hint double the backoff up to a cap.
    """

    def __init__(self) -> None:
        self._pending = 0.0
        self._streak = 0

    def record(self, retry_after: float | None) -> None:
        if retry_after is not None and retry_after > 0:
            backoff = retry_after
        else:
            backoff = min(_DEFAULT_THROTTLE_BACKOFF * (2 ** self._streak), _MAX_THROTTLE_BACKOFF)
        self._streak += 1
        self._pending = max(self._pending, backoff)
        logger.warning("Upstream throttled; backing off %.2fs", backoff)

    def take(self) -> float:
        pending, self._pending = self._pending, 0.0
        if pending == 0.0:
            self._streak = 0
        return pending


class FixedDelayPacer:
    """Sleeps a fixed delay between pages (0.3s by default)."""

    def __init__(self, delay: float = 0.3, sleep: Sleep = asyncio.sleep) -> None:
        self.delay = delay
        self._sleep = sleep
        self._throttle = _ThrottleMemory()

    async def wait(self) -> None:
        seconds = max(self.delay, self._throttle.take())
        if seconds > 0:
            await self._sleep(seconds)

    def throttled(self, retry_after: float | None = None) -> None:
        self._throttle.record(retry_after)


class TokenBucketPacer:
    """Token bucket limiting pages per second, with burst capacity.

    Each ``wait()`` takes one token; when the bucket is empty it sleeps
    until a token refills. A throttling signal drains the bucket so the
    burst allowance does not immediately hammer the upstream again.
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Args:
            rate: Tokens (pages) per second to add.
            capacity: Maximum tokens (burst size).
        """
        if rate <= 0:
            raise ValueError("token bucket rate must be positive")
        if capacity < 1:
            raise ValueError("token bucket capacity must be at least one token")
        self._rate = rate
        self._capacity = capacity
        self._tokens = capacity
        self._clock = clock
        self._sleep = sleep
        self._last_update = clock()
        self._throttle = _ThrottleMemory()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_update
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_update = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take tokens without blocking. Returns True on success."""
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    async def wait(self) -> None:
        backoff = self._throttle.take()
        if backoff > 0:
            await self._sleep(backoff)
        while not self.try_acquire():
            await self._sleep((1.0 - self._tokens) / self._rate)

    def throttled(self, retry_after: float | None = None) -> None:
        self._refill()
        self._tokens = 0.0
        self._throttle.record(retry_after)


def create_pacer(
    strategy: str,
    delay: float = 0.3,
    rate: float = 5.0,
    capacity: float = 5.0,
    sleep: Sleep = asyncio.sleep,
) -> Pacer:
    """Build a pacer from config values.

    Raises:
        ValueError: If the strategy name is unknown.
    """
    if strategy == "fixed":
        return FixedDelayPacer(delay, sleep=sleep)
    if strategy == "token_bucket":
        return TokenBucketPacer(rate, capacity, sleep=sleep)
    raise ValueError(f"Unknown pacing strategy: {strategy}")
