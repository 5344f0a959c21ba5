"""State store abstraction for the rate limiter.

The store is the only shared mutable resource in the system and the
serialization point for every decision: all operations are linearizable
per key, with no cross-key atomicity.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple


class StateStore(ABC):
    """Abstract base class for shared state stores.

    All store implementations must inherit from this class and implement
    the abstract methods. Failures are raised as StoreUnavailable or one of
    its subclasses (StoreTimeout, ConnectionLost).
    """

    @abstractmethod
    async def incr_with_expiry(self, key: str, delta: int, ttl: int) -> int:
        """Atomically add delta to an integer counter.

        A missing key starts from 0 and receives the TTL; an existing key
        keeps its expiry.

        Args:
            key: Counter key.
            delta: Amount to add (may be negative).
            ttl: Time-to-live in seconds applied when the key is created.

        Returns:
            The counter value after the increment.
        """
        pass

    @abstractmethod
    async def incr_within_limit(
        self, key: str, delta: int, limit: int, ttl: int
    ) -> Tuple[bool, int]:
        """Atomically add delta only if the counter stays at or below limit.

        A rejected increment leaves the counter (and a missing key) untouched.

        Args:
            key: Counter key.
            delta: Amount to add.
            limit: Highest value the counter may reach.
            ttl: Time-to-live in seconds applied when the key is created.

        Returns:
            (applied, counter value after the call)
        """
        pass

    @abstractmethod
    async def compare_and_swap(
        self,
        key: str,
        expected: Optional[str],
        new: str,
        ttl: int,
    ) -> bool:
        """Atomically replace the value of key if it still equals expected.

        Args:
            key: State key.
            expected: Value read previously, or None if the key was absent.
            new: Replacement value.
            ttl: Time-to-live in seconds for the new value.

        Returns:
            True if the swap happened, False if another writer won the race.

        Raises:
            KeyExpiredConcurrently: expected was not None but the key is gone.
        """
        pass

    @abstractmethod
    async def get_with_ttl(self, key: str) -> Tuple[Optional[str], Optional[float]]:
        """Read a value together with its remaining time-to-live.

        Returns:
            (value, remaining_ttl_seconds); value is None for a missing key and
            remaining_ttl is None when the key is missing or has no expiry.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store is reachable."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
