"""Sliding window log: exact trailing-window limiting.

Keeps the timestamp of every admitted request inside the trailing window
(now - window, now]. Exact, at the cost of O(capacity) state per key.
"""

import bisect
from typing import Optional, Tuple

from limiter.app.algorithms.base import RateLimitAlgorithm, State, cas_update
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore


class SlidingLog(RateLimitAlgorithm):
    """Sliding window log over a compare-and-swap state record.

    State: {"log": [ts, ...]} in ascending order.
    """

    algorithm = Algorithm.SLIDING_LOG

    def __init__(self, max_cas_attempts: int = 5):
        self.max_cas_attempts = max_cas_attempts

    def apply(
        self,
        state: Optional[State],
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Tuple[State, Decision]:
        """Evict aged-out entries, then admit if the log has room."""
        window = policy.window_seconds
        capacity = policy.capacity

        log = sorted(float(ts) for ts in state["log"]) if state else []
        cutoff = now - window
        log = log[bisect.bisect_right(log, cutoff):]

        allowed = len(log) + cost <= capacity
        if allowed:
            for _ in range(cost):
                bisect.insort(log, now)

        retry_after = None
        if not allowed:
            if cost > capacity:
                retry_after = window
            else:
                # The entry whose expiry frees enough room for this request
                must_expire = len(log) + cost - capacity
                retry_after = max(0.0, log[must_expire - 1] + window - now)

        decision = Decision(
            allowed=allowed,
            limit=policy.limit,
            remaining=max(0, capacity - len(log)),
            reset_at=log[0] + window if log else now,
            retry_after=retry_after,
            window_seconds=window,
            policy_name=policy.name,
        )
        return {"log": log}, decision

    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        ttl = policy.state_ttl(policy.window_seconds)
        return await cas_update(
            store,
            key,
            lambda state: self.apply(state, policy, now, cost),
            ttl,
            self.max_cas_attempts,
        )
