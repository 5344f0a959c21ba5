"""Redis-backed shared state store.

Uses Redis for distributed rate limiting across multiple instances. Every
read-modify-write runs as a Lua script so it is atomic on the server.
"""

from typing import Any, Optional, Tuple

import redis
import redis.asyncio as aioredis

from limiter.app.core.config import settings
from limiter.app.core.logging import get_logger
from limiter.app.exceptions import (
    ConnectionLost,
    KeyExpiredConcurrently,
    StoreTimeout,
    StoreUnavailable,
)
from limiter.app.store.base import StateStore
from limiter.app.store.redis_lua import (
    COMPARE_AND_SWAP_SCRIPT,
    INCR_WITH_EXPIRY_SCRIPT,
    INCR_WITHIN_LIMIT_SCRIPT,
)

logger = get_logger(__name__)


def _decode(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class RedisStateStore(StateStore):
    """Redis implementation of the StateStore contract.

    Example:
        >>> store = RedisStateStore(redis_url="redis://localhost:6379/0")
        >>> await store.incr_with_expiry("ratelimit:fw:k:1", 1, ttl=61)
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        socket_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Optional pre-built async Redis client
            redis_url: Redis connection URL (defaults to settings.redis_url)
            socket_timeout: Per-command socket timeout in seconds
        """
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self._socket_timeout = socket_timeout or settings.store_timeout_seconds

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        return self._redis

    @staticmethod
    def _translate(exc: redis.RedisError) -> StoreUnavailable:
        # TimeoutError and ConnectionError both subclass RedisError
        if isinstance(exc, redis.TimeoutError):
            return StoreTimeout(f"Redis timeout: {exc}")
        if isinstance(exc, redis.ConnectionError):
            return ConnectionLost(f"Redis connection failed: {exc}")
        return StoreUnavailable(f"Redis error: {exc}")

    async def incr_with_expiry(self, key: str, delta: int, ttl: int) -> int:
        client = self._get_redis()
        try:
            result = await client.eval(INCR_WITH_EXPIRY_SCRIPT, 1, key, delta, ttl)
        except redis.RedisError as e:
            raise self._translate(e) from e
        return int(result)

    async def incr_within_limit(
        self, key: str, delta: int, limit: int, ttl: int
    ) -> Tuple[bool, int]:
        client = self._get_redis()
        try:
            applied, value = await client.eval(
                INCR_WITHIN_LIMIT_SCRIPT, 1, key, delta, limit, ttl
            )
        except redis.RedisError as e:
            raise self._translate(e) from e
        return int(applied) == 1, int(value)

    async def compare_and_swap(
        self,
        key: str,
        expected: Optional[str],
        new: str,
        ttl: int,
    ) -> bool:
        client = self._get_redis()
        try:
            result = await client.eval(
                COMPARE_AND_SWAP_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                "0" if expected is None else "1",  # ARGV[1]
                expected or "",  # ARGV[2]
                new,  # ARGV[3]
                ttl,  # ARGV[4]
            )
        except redis.RedisError as e:
            raise self._translate(e) from e
        outcome = int(result)
        if outcome < 0:
            raise KeyExpiredConcurrently(key)
        return outcome == 1

    async def get_with_ttl(self, key: str) -> Tuple[Optional[str], Optional[float]]:
        client = self._get_redis()
        try:
            pipe = client.pipeline()
            pipe.get(key)
            pipe.pttl(key)
            value, pttl = await pipe.execute()
        except redis.RedisError as e:
            raise self._translate(e) from e
        value = _decode(value)
        if value is None:
            return None, None
        pttl = int(pttl)
        # -1: no expiry, -2: key vanished between GET and PTTL
        if pttl < 0:
            return value, None
        return value, pttl / 1000.0

    async def delete(self, key: str) -> None:
        client = self._get_redis()
        try:
            await client.delete(key)
        except redis.RedisError as e:
            raise self._translate(e) from e

    async def ping(self) -> bool:
        client = self._get_redis()
        try:
            return bool(await client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
