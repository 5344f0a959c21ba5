"""Token bucket: tokens refill at a constant rate up to the bucket size.

Allows bursts up to the bucket size (capacity plus burst allowance) while
bounding the long-run rate to the refill rate.
"""

import math
from typing import Optional, Tuple

from limiter.app.algorithms.base import RateLimitAlgorithm, State, cas_update
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore


class TokenBucket(RateLimitAlgorithm):
    """Token bucket over a compare-and-swap state record.

    State: {"tokens": float, "ts": float}. A missing key is a full bucket.
    """

    algorithm = Algorithm.TOKEN_BUCKET

    def __init__(self, max_cas_attempts: int = 5):
        self.max_cas_attempts = max_cas_attempts

    def apply(
        self,
        state: Optional[State],
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Tuple[State, Decision]:
        """Refill, then try to consume cost tokens."""
        size = float(policy.bucket_size)
        rate = policy.rate

        if state is None:
            tokens, last = size, now
        else:
            # Clamp first: the bucket size may have shrunk since the last write
            tokens = min(float(state["tokens"]), size)
            last = float(state["ts"])

        # Refill always happens before the check, even on denial
        elapsed = max(0.0, now - last)
        tokens = min(size, tokens + elapsed * rate)
        last = max(last, now)

        allowed = tokens >= cost
        if allowed:
            tokens -= cost

        remaining = int(math.floor(tokens))
        if tokens >= size:
            reset_at = now
        else:
            reset_at = now + (remaining + 1 - tokens) / rate

        retry_after = None
        if not allowed:
            if cost > size:
                retry_after = policy.window_seconds
            else:
                retry_after = (cost - tokens) / rate

        decision = Decision(
            allowed=allowed,
            limit=policy.limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after=retry_after,
            window_seconds=policy.window_seconds,
            policy_name=policy.name,
        )
        return {"tokens": tokens, "ts": last}, decision

    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        # After size / rate seconds an absent key equals a full bucket
        ttl = policy.state_ttl(policy.bucket_size / policy.rate)
        return await cas_update(
            store,
            key,
            lambda state: self.apply(state, policy, now, cost),
            ttl,
            self.max_cas_attempts,
        )
