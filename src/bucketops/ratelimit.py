"""Per-identity request quotas in three tiers.

Requests are classified by verb into READ, WRITE and DELETE tiers, each
with its own limit per period. Counting is delegated to a
``RateLimitCounter`` so a shared backend can replace the in-process one.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, runtime_checkable

from bucketops import metrics
from bucketops.config import RateLimitConfig
from bucketops.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimitTier(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    DELETE = "DELETE"


def classify(method: str, path: str) -> RateLimitTier:
    """Map a request to its tier.

    DELETE is always the DELETE tier and GET always READ, whatever the
    path. Generating a signed link counts as a read.
    """
    method = method.upper()
    if method == "DELETE":
        return RateLimitTier.DELETE
    if method == "GET" or "/signed-url" in path:
        return RateLimitTier.READ
    if method in ("POST", "PATCH", "PUT"):
        return RateLimitTier.WRITE
    return RateLimitTier.READ


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    tier: RateLimitTier
    limit: int
    period: int

    def to_error(self) -> RateLimitExceeded:
        return RateLimitExceeded(self.tier.value, self.limit, self.period)


@runtime_checkable
class RateLimitCounter(Protocol):
    """Counts hits per key within a window."""

    async def hit(self, key: str, limit: int, period: int) -> bool:
        """Record one hit for ``key``.

        Returns:
            True if the hit is within ``limit`` for the current window.
        """
        ...


class InMemoryRateLimitCounter:
    """Fixed-window counter held in process memory.

    Each key keeps a count and the time its window resets. Only suitable
    for a single process; counts are lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, period: int) -> bool:
        async with self._lock:
            now = self._clock()
            count, reset_at = self._windows.get(key, (0, now + period))
            if now >= reset_at:
                count, reset_at = 0, now + period
            if count >= limit:
                self._windows[key] = (count, reset_at)
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def reset(self) -> None:
        self._windows.clear()


class RateLimiter:
    """Checks a caller against the quota of a tier.

    Attributes:
        config: Tier limits and periods.
        counter: Backing hit counter.
    """

    def __init__(self, config: RateLimitConfig, counter: RateLimitCounter | None = None) -> None:
        self.config = config
        self.counter = counter if counter is not None else InMemoryRateLimitCounter()

    def limits(self, tier: RateLimitTier) -> tuple[int, int]:
        """Return (limit, period) for a tier."""
        if tier is RateLimitTier.DELETE:
            return self.config.delete_limit, self.config.delete_period
        if tier is RateLimitTier.WRITE:
            return self.config.write_limit, self.config.write_period
        return self.config.read_limit, self.config.read_period

    async def check(self, tier: RateLimitTier, identity: str) -> RateLimitDecision:
        limit, period = self.limits(tier)
        allowed = await self.counter.hit(f"{tier.value}:{identity}", limit, period)
        if not allowed:
            metrics.record_rate_limited(tier.value)
            logger.warning(
                "Rate limit exceeded for %s (%s tier, %d per %ds)",
                identity, tier.value, limit, period,
                extra={"identity": identity},
            )
        return RateLimitDecision(allowed=allowed, tier=tier, limit=limit, period=period)

    async def check_request(self, method: str, path: str, identity: str) -> RateLimitDecision:
        return await self.check(classify(method, path), identity)
