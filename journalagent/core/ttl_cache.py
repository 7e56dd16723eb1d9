"""Process-wide TTL holder swapped atomically on refresh."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar


T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class _Entry(Generic[T]):
    value: T
    stored_at: float


class TtlRef(Generic[T]):
    """Single-value cache.

    Readers take one reference to an immutable entry, so a concurrent refresh can never
    hand them a half-written value. Refreshes are single-flight behind an asyncio lock.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entry: _Entry[T] | None = None
        self._refresh_lock: asyncio.Lock | None = None

    def get(self) -> T | None:
        entry = self._entry
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            return None
        return entry.value

    def age_seconds(self) -> float | None:
        entry = self._entry
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def set(self, value: T) -> None:
        self._entry = _Entry(value=value, stored_at=self._clock())

    def invalidate(self) -> None:
        self._entry = None

    def invalidate_if(self, value: T) -> bool:
        """Clear only while ``value`` is still the cached one; a newer entry survives."""

        entry = self._entry
        if entry is None or entry.value != value:
            return False
        self._entry = None
        return True

    def _lock(self) -> asyncio.Lock:
        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        return self._refresh_lock

    async def get_or_refresh(self, loader: Callable[[], Awaitable[T | None]]) -> T | None:
        """Return the fresh value, or run ``loader`` once for all concurrent callers.

        A loader returning ``None`` leaves the cache empty so the next caller retries.
        """

        cached = self.get()
        if cached is not None:
            return cached
        async with self._lock():
            cached = self.get()
            if cached is not None:
                return cached
            value = await loader()
            if value is not None:
                self.set(value)
            return value
