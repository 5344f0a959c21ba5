"""Leaky bucket: a bounded queue drained at a constant rate.

Unlike the token bucket, which lets a full bucket burst, the leaky bucket
smooths admitted traffic to the leak rate. The leak runs on a virtual
clock: each evaluation computes how much would have drained since the
last one, so no timer task exists per key.
"""

import math
from typing import Optional, Tuple

from limiter.app.algorithms.base import RateLimitAlgorithm, State, cas_update
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore


class LeakyBucket(RateLimitAlgorithm):
    """Leaky bucket over a compare-and-swap state record.

    State: {"level": float, "ts": float}. A missing key is an empty queue.
    """

    algorithm = Algorithm.LEAKY_BUCKET

    def __init__(self, max_cas_attempts: int = 5):
        self.max_cas_attempts = max_cas_attempts

    def apply(
        self,
        state: Optional[State],
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Tuple[State, Decision]:
        """Leak, then try to enqueue cost units."""
        size = float(policy.bucket_size)
        leak_rate = policy.rate

        if state is None:
            level, last = 0.0, now
        else:
            level = min(float(state["level"]), size)
            last = float(state["ts"])

        elapsed = max(0.0, now - last)
        level = max(0.0, level - elapsed * leak_rate)
        last = max(last, now)

        allowed = level + cost <= size
        if allowed:
            level += cost

        headroom = size - level
        remaining = max(0, int(math.floor(headroom)))
        if level <= 0:
            reset_at = now
        else:
            # Next time floor(headroom) goes up, bounded by the queue draining
            step = math.floor(headroom) + 1 - headroom
            reset_at = now + min(step, level) / leak_rate

        retry_after = None
        if not allowed:
            if cost > size:
                retry_after = policy.window_seconds
            else:
                retry_after = (level + cost - size) / leak_rate

        decision = Decision(
            allowed=allowed,
            limit=policy.limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after=retry_after,
            window_seconds=policy.window_seconds,
            policy_name=policy.name,
        )
        return {"level": level, "ts": last}, decision

    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        ttl = policy.state_ttl(policy.bucket_size / policy.rate)
        return await cas_update(
            store,
            key,
            lambda state: self.apply(state, policy, now, cost),
            ttl,
            self.max_cas_attempts,
        )
