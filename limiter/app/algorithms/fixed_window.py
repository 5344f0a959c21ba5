"""Fixed window: one counter per epoch-aligned window.

Known characteristic: a client can send `capacity` requests at the end of
one window and `capacity` more at the start of the next, so up to twice the
limit can pass within a short span around a boundary. This is accepted as
the price of O(1) state; policies that cannot tolerate it should use a
sliding window algorithm instead.
"""

import math

from limiter.app.algorithms.base import RateLimitAlgorithm
from limiter.app.models import Algorithm, Decision, LimitPolicy
from limiter.app.store.base import StateStore


class FixedWindow(RateLimitAlgorithm):
    """Fixed window counter backed by the store's atomic increment.

    Denied requests still count toward the window unless the policy sets
    count_denied=False, in which case the increment is only applied when it
    fits under the capacity.
    """

    algorithm = Algorithm.FIXED_WINDOW

    @staticmethod
    def window_bounds(policy: LimitPolicy, now: float) -> tuple[int, float, float]:
        """Return (window index, window start, window end) for now."""
        index = math.floor(now / policy.window_seconds)
        start = index * policy.window_seconds
        return index, start, start + policy.window_seconds

    async def evaluate(
        self,
        store: StateStore,
        key: str,
        policy: LimitPolicy,
        now: float,
        cost: int = 1,
    ) -> Decision:
        index, _, reset_at = self.window_bounds(policy, now)
        window_key = f"{key}:{index}"
        ttl = policy.state_ttl(reset_at - now)

        if policy.count_denied:
            count = await store.incr_with_expiry(window_key, cost, ttl)
            allowed = count <= policy.capacity
        else:
            # One atomic step: a denied request never touches the counter
            allowed, count = await store.incr_within_limit(
                window_key, cost, policy.capacity, ttl
            )

        return Decision(
            allowed=allowed,
            limit=policy.limit,
            remaining=max(0, policy.capacity - count),
            reset_at=reset_at,
            retry_after=None if allowed else reset_at - now,
            window_seconds=policy.window_seconds,
            policy_name=policy.name,
        )
