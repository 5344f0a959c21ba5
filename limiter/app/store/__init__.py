"""Shared state store backends.

Provides a pluggable store with Redis and in-memory implementations.
"""

from typing import Optional

from limiter.app.store.base import StateStore
from limiter.app.store.memory import InMemoryStateStore
from limiter.app.store.redis_store import RedisStateStore

__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
    "get_state_store",
    "reset_state_store",
]


# Global store instance (singleton pattern)
_store_instance: Optional[StateStore] = None


def get_state_store(
    backend: Optional[str] = None,
    redis_url: Optional[str] = None,
    force_new: bool = False,
) -> StateStore:
    """Get or create the global state store.

    Args:
        backend: 'memory', 'redis', or None to follow settings.redis_enabled.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A StateStore instance (InMemoryStateStore or RedisStateStore).
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from limiter.app.core.config import settings

    if backend == "redis":
        use_redis = True
    elif backend == "memory":
        use_redis = False
    else:
        use_redis = settings.redis_enabled

    if use_redis:
        _store_instance = RedisStateStore(redis_url=redis_url or settings.redis_url)
    else:
        _store_instance = InMemoryStateStore(
            max_entries=settings.memory_store_max_entries
        )
    return _store_instance


def reset_state_store() -> None:
    """Reset the global store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
