"""Tests for the token bucket algorithm."""

import json
import random

import pytest

from limiter.app.algorithms import TokenBucket
from limiter.app.models import Algorithm, LimitPolicy
from limiter.app.store import InMemoryStateStore


def make_policy(**overrides) -> LimitPolicy:
    params = dict(
        name="tb",
        algorithm=Algorithm.TOKEN_BUCKET,
        capacity=5,
        window_seconds=5,
    )
    params.update(overrides)
    return LimitPolicy(**params)


class TestTokenBucketApply:
    """Tests for the pure state transition."""

    def test_missing_state_is_full_bucket(self):
        state, decision = TokenBucket().apply(None, make_policy(), now=100.0)
        assert decision.allowed is True
        assert decision.remaining == 4
        assert state == {"tokens": 4.0, "ts": 100.0}

    def test_refill_is_capped_at_bucket_size(self):
        policy = make_policy(burst_allowance=2)
        state, decision = TokenBucket().apply(
            {"tokens": 0.0, "ts": 0.0}, policy, now=1000.0
        )
        assert decision.allowed is True
        assert state["tokens"] == 6.0
        assert decision.limit == 7

    def test_denial_persists_refill(self):
        policy = make_policy()
        state, decision = TokenBucket().apply(
            {"tokens": 0.0, "ts": 10.0}, policy, now=10.5
        )
        assert decision.allowed is False
        assert state == {"tokens": 0.5, "ts": 10.5}
        assert decision.retry_after == pytest.approx(0.5)

    def test_clock_skew_does_not_refill_or_move_backwards(self):
        state, decision = TokenBucket().apply(
            {"tokens": 1.0, "ts": 50.0}, make_policy(), now=40.0
        )
        assert decision.allowed is True
        assert state["tokens"] == 0.0
        assert state["ts"] == 50.0

    def test_shrunk_policy_clamps_balance(self):
        """A smaller bucket takes effect on the next evaluation."""
        policy = make_policy(capacity=2, window_seconds=2)
        state, decision = TokenBucket().apply(
            {"tokens": 50.0, "ts": 0.0}, policy, now=0.0
        )
        assert state["tokens"] == 1.0
        assert decision.remaining == 1

    def test_cost_larger_than_bucket_is_denied(self):
        _, decision = TokenBucket().apply(None, make_policy(), now=0.0, cost=10)
        assert decision.allowed is False
        assert decision.retry_after == 5

    def test_reset_at_is_next_whole_token(self):
        policy = make_policy()
        _, decision = TokenBucket().apply({"tokens": 2.25, "ts": 0.0}, policy, now=0.0)
        # 1.25 tokens left; the next whole token arrives 0.75s later
        assert decision.remaining == 1
        assert decision.reset_at == pytest.approx(0.75)

    def test_tokens_stay_within_bounds(self):
        """Tokens never exceed the bucket size and never go negative."""
        policy = make_policy(capacity=5, window_seconds=2, burst_allowance=3)
        bucket = TokenBucket()
        rng = random.Random(42)
        state = None
        now = 0.0
        for _ in range(2000):
            now += rng.choice([0.0, 0.0, 0.01, 0.1, 0.5, 3.0])
            state, _ = bucket.apply(state, policy, now, cost=rng.randint(1, 3))
            assert 0.0 <= state["tokens"] <= policy.bucket_size


class TestTokenBucketEvaluate:
    """Tests against the in-memory store."""

    @pytest.mark.asyncio
    async def test_five_rapid_then_deny_then_refill(self):
        """capacity=5, 1 token/s: 5 pass at t=0, 6th denied, one passes at t=1."""
        store = InMemoryStateStore()
        bucket = TokenBucket()
        policy = make_policy(capacity=5, window_seconds=5)

        for _ in range(5):
            decision = await bucket.evaluate(store, "k", policy, now=0.0)
            assert decision.allowed is True

        decision = await bucket.evaluate(store, "k", policy, now=0.0)
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(1.0)

        decision = await bucket.evaluate(store, "k", policy, now=1.0)
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_state_is_stored_as_json(self):
        store = InMemoryStateStore()
        await TokenBucket().evaluate(store, "k", make_policy(), now=3.0)
        raw, ttl = await store.get_with_ttl("k")
        assert json.loads(raw) == {"tokens": 4.0, "ts": 3.0}
        assert ttl is not None and 0 < ttl <= 6

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        store = InMemoryStateStore()
        bucket = TokenBucket()
        policy = make_policy(capacity=1, window_seconds=60)

        assert (await bucket.evaluate(store, "a", policy, now=0.0)).allowed is True
        assert (await bucket.evaluate(store, "a", policy, now=0.0)).allowed is False
        assert (await bucket.evaluate(store, "b", policy, now=0.0)).allowed is True
