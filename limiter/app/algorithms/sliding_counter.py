"""Sliding window counter: approximate trailing-window limiting.

The window is split into `num_buckets` sub-windows. The trailing window
[now - window, now] fully covers the newest num_buckets sub-windows except
for the oldest one, which it overlaps partially; that sub-window's count is
weighted by the overlapped fraction, assuming its requests were spread
evenly.

Error bound: the real number of requests in the trailing window differs
from the estimate by at most the oldest sub-window's count, so admissions
never exceed the limit by more than one sub-window's worth of traffic.
"""

import math
from typing import Dict, Optional, Tuple

from limiter.app.algorithms.base import RateLimitAlgorithm, State, cas_update
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore


def weighted_count(
    counts: Dict[int, int],
    current: int,
    num_buckets: int,
    elapsed_fraction: float,
) -> float:
    """Estimate requests in the trailing window ending inside sub-window `current`."""
    full = sum(c for b, c in counts.items() if b > current - num_buckets)
    partial = counts.get(current - num_buckets, 0)
    return full + partial * (1.0 - elapsed_fraction)


class SlidingCounter(RateLimitAlgorithm):
    """Sliding window counter over a compare-and-swap state record.

    State: {"buckets": {sub_window_id: count}}. Denied requests are not
    counted.
    """

    algorithm = Algorithm.SLIDING_COUNTER

    def __init__(self, max_cas_attempts: int = 5):
        self.max_cas_attempts = max_cas_attempts

    def apply(
        self,
        state: Optional[State],
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Tuple[State, Decision]:
        n = policy.num_buckets
        sub = policy.window_seconds / n
        current = math.floor(now / sub)
        fraction = (now - current * sub) / sub

        counts: Dict[int, int] = {}
        if state:
            for bucket_id, count in state["buckets"].items():
                bucket_id = int(bucket_id)
                if bucket_id >= current - n:
                    counts[bucket_id] = int(count)

        estimate = weighted_count(counts, current, n, fraction)
        # Round the estimate down so a fractional tail never blocks an admit
        allowed = math.floor(estimate) + cost <= policy.capacity
        if allowed:
            counts[current] = counts.get(current, 0) + cost
            estimate += cost

        retry_after = None
        if not allowed:
            retry_after = self._retry_after(counts, current, n, sub, now, policy, cost)

        decision = Decision(
            allowed=allowed,
            limit=policy.limit,
            remaining=max(0, policy.capacity - math.floor(estimate)),
            reset_at=(current + 1) * sub if counts else now,
            retry_after=retry_after,
            window_seconds=policy.window_seconds,
            policy_name=policy.name,
        )
        return {"buckets": {str(b): c for b, c in counts.items()}}, decision

    @staticmethod
    def _retry_after(
        counts: Dict[int, int],
        current: int,
        n: int,
        sub: float,
        now: float,
        policy: LimitPolicy,
        cost: int,
    ) -> float:
        """Project the estimate forward, assuming no new traffic."""
        # Admit iff estimate < threshold
        threshold = policy.capacity - cost + 1
        if threshold <= 0:
            return policy.window_seconds

        for step in range(n + 1):
            bucket = current + step
            full = sum(c for b, c in counts.items() if b > bucket - n)
            if full >= threshold:
                continue
            partial = counts.get(bucket - n, 0)
            start = bucket * sub
            if full + partial < threshold:
                at = start
            else:
                at = start + sub * (1.0 - (threshold - full) / partial)
            return max(0.0, at - now)
        return policy.window_seconds

    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        sub = policy.window_seconds / policy.num_buckets
        ttl = policy.state_ttl(policy.window_seconds + sub)
        return await cas_update(
            store,
            key,
            lambda state: self.apply(state, policy, now, cost),
            ttl,
            self.max_cas_attempts,
        )
