"""Tests for the sliding window log algorithm."""

import random

import pytest

from limiter.app.algorithms import SlidingLog
from limiter.app.models import Algorithm, LimitPolicy
from limiter.app.store import InMemoryStateStore


def make_policy(**overrides) -> LimitPolicy:
    params = dict(
        name="sl",
        algorithm=Algorithm.SLIDING_LOG,
        capacity=3,
        window_seconds=60,
    )
    params.update(overrides)
    return LimitPolicy(**params)


class TestSlidingLog:
    """Tests for exact trailing-window limiting."""

    @pytest.mark.asyncio
    async def test_fourth_in_window_denied_until_oldest_ages_out(self):
        """limit=3, window=60: t=0,10,20 pass, t=30 denied, t=61 passes."""
        store = InMemoryStateStore()
        algorithm = SlidingLog()
        policy = make_policy()

        for t in (0.0, 10.0, 20.0):
            assert (await algorithm.evaluate(store, "k", policy, now=t)).allowed is True

        decision = await algorithm.evaluate(store, "k", policy, now=30.0)
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(30.0)

        decision = await algorithm.evaluate(store, "k", policy, now=61.0)
        assert decision.allowed is True

    def test_denial_only_persists_eviction(self):
        state, decision = SlidingLog().apply(
            {"log": [1.0, 70.0, 80.0, 90.0]}, make_policy(), now=100.0
        )
        assert decision.allowed is False
        assert state == {"log": [70.0, 80.0, 90.0]}
        assert decision.reset_at == pytest.approx(130.0)

    def test_cost_reserves_multiple_slots(self):
        state, decision = SlidingLog().apply(None, make_policy(), now=5.0, cost=2)
        assert decision.allowed is True
        assert decision.remaining == 1
        assert state["log"] == [5.0, 5.0]

    def test_never_admits_more_than_limit_in_any_window(self):
        """No trailing window ever holds more than `limit` admits."""
        policy = make_policy(capacity=5, window_seconds=10)
        algorithm = SlidingLog()
        rng = random.Random(7)
        state = None
        admitted = []
        now = 0.0
        for _ in range(1500):
            now += rng.choice([0.0, 0.05, 0.3, 1.0, 2.5])
            state, decision = algorithm.apply(state, policy, now)
            if decision.allowed:
                admitted.append(now)
                in_window = [t for t in admitted if now - policy.window_seconds < t <= now]
                assert len(in_window) <= policy.capacity
