"""A single-value cache with an explicit time-to-live."""

import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds one value and the time it was fetched.

    ``get`` returns None once the value is older than ``ttl_seconds``;
    expiry is checked on read, nothing runs in the background.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: T | None = None
        self._fetched_at: float | None = None

    def get(self) -> T | None:
        if self._fetched_at is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl_seconds:
            self.invalidate()
            return None
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._fetched_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._fetched_at = None

    @property
    def fetched_at(self) -> float | None:
        return self._fetched_at
