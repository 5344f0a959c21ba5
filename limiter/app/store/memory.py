"""In-process state store.

Implements the StateStore contract inside a single process. Suitable for
single-instance deployments and tests; a replicated fleet must use Redis.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from limiter.app.exceptions import KeyExpiredConcurrently
from limiter.app.store.base import StateStore


@dataclass
class _StoreEntry:
    """Internal store entry with TTL tracking."""

    value: str
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class InMemoryStateStore(StateStore):
    """In-memory state store with TTL support.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits max entries to prevent unbounded memory growth
    - Evicts the oldest 20% of entries when the limit is exceeded

    An evicted key behaves exactly like an expired one: the limiter treats
    it as a client with no prior usage.
    """

    DEFAULT_MAX_ENTRIES = 100000

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            max_entries: Maximum number of keys held before LRU eviction
            clock: Time source for TTL bookkeeping
        """
        self._data: OrderedDict[str, _StoreEntry] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> Optional[_StoreEntry]:
        """Return the entry for key, dropping it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry

    def _store(self, key: str, value: str, ttl: Optional[int]) -> None:
        """Write an entry and enforce the LRU limit. Caller holds the lock."""
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._data[key] = _StoreEntry(value=value, expires_at=expires_at)
        self._data.move_to_end(key)
        if len(self._data) > self._max_entries:
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(min(remove_count, len(self._data) - 1)):
                self._data.popitem(last=False)

    async def incr_with_expiry(self, key: str, delta: int, ttl: int) -> int:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._store(key, str(delta), ttl)
                return delta
            new_value = int(entry.value) + delta
            entry.value = str(new_value)
            return new_value

    async def incr_within_limit(
        self, key: str, delta: int, limit: int, ttl: int
    ) -> Tuple[bool, int]:
        async with self._lock:
            entry = self._live_entry(key)
            current = int(entry.value) if entry is not None else 0
            if current + delta > limit:
                return False, current
            if entry is None:
                self._store(key, str(delta), ttl)
            else:
                entry.value = str(current + delta)
            return True, current + delta

    async def compare_and_swap(
        self,
        key: str,
        expected: Optional[str],
        new: str,
        ttl: int,
    ) -> bool:
        async with self._lock:
            entry = self._live_entry(key)
            if expected is None:
                if entry is not None:
                    return False
            else:
                if entry is None:
                    raise KeyExpiredConcurrently(key)
                if entry.value != expected:
                    return False
            self._store(key, new, ttl)
            return True

    async def get_with_ttl(self, key: str) -> Tuple[Optional[str], Optional[float]]:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None, None
            if entry.expires_at is None:
                return entry.value, None
            return entry.value, max(0.0, entry.expires_at - self._clock())

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
