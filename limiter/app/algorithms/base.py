"""Algorithm interface and the optimistic update loop shared by stateful algorithms."""

import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from limiter.app.core.logging import get_logger
from limiter.app.exceptions import KeyExpiredConcurrently, StoreContention
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore

logger = get_logger(__name__)

State = Dict[str, Any]
ApplyFn = Callable[[Optional[State]], Tuple[State, Decision]]


class RateLimitAlgorithm(ABC):
    """Interface every rate limiting algorithm implements.

    Implementations hold configuration only. All per-client state lives in
    the StateStore, so one instance serves every key and every replica.
    """

    algorithm: Algorithm

    @abstractmethod
    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        """Decide whether a request is admitted and update the stored state.

        Args:
            store: Shared state store
            key: Store key for this (policy, client) pair
            policy: Limit policy being enforced
            now: Current Unix time in seconds
            cost: Units consumed by the request

        Returns:
            Decision for this request
        """
        pass


def decode_state(raw: Optional[str], key: str) -> Optional[State]:
    """Parse stored JSON state; unreadable state counts as no prior usage."""
    if raw is None:
        return None
    try:
        state = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding unreadable limiter state at {key}")
        return None
    if not isinstance(state, dict):
        logger.warning(f"Discarding unexpected limiter state at {key}")
        return None
    return state


def encode_state(state: State) -> str:
    return json.dumps(state, separators=(",", ":"), sort_keys=True)


async def cas_update(
    store: StateStore,
    key: str,
    apply: ApplyFn,
    ttl: int,
    max_attempts: int,
) -> Decision:
    """Read, transform and compare-and-swap a state record.

    The store's compare-and-swap is the serialization point: when another
    instance updated the key between our read and our write the swap fails
    and the whole decision is recomputed from the fresh state.

    Raises:
        StoreContention: every attempt lost its race.
    """
    for attempt in range(max_attempts):
        raw, _ = await store.get_with_ttl(key)
        state = decode_state(raw, key)
        try:
            new_state, decision = apply(state)
        except (KeyError, TypeError, ValueError, AttributeError):
            if state is None:
                raise
            # Well-formed JSON in another shape (older schema, foreign writer)
            logger.warning(f"Discarding malformed limiter state at {key}")
            new_state, decision = apply(None)
        try:
            if await store.compare_and_swap(key, raw, encode_state(new_state), ttl):
                return decision
        except KeyExpiredConcurrently:
            logger.debug(f"State at {key} expired mid-update, treating as fresh")
            continue
        logger.debug(f"Lost compare-and-swap race on {key} (attempt {attempt + 1})")
    raise StoreContention(key, max_attempts)
