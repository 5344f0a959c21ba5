"""Tests for the fixed window algorithm."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from limiter.app.algorithms import FixedWindow
from limiter.app.models import Algorithm, LimitPolicy
from limiter.app.store import InMemoryStateStore
from limiter.app.store.base import StateStore


def make_policy(**overrides) -> LimitPolicy:
    params = dict(
        name="fw",
        algorithm=Algorithm.FIXED_WINDOW,
        capacity=100,
        window_seconds=60,
    )
    params.update(overrides)
    return LimitPolicy(**params)


class TestFixedWindow:
    """Tests for the epoch-aligned counter."""

    def test_window_bounds_are_epoch_aligned(self):
        assert FixedWindow.window_bounds(make_policy(), 59.9) == (0, 0, 60)
        assert FixedWindow.window_bounds(make_policy(), 60.0) == (1, 60, 120)

    @pytest.mark.asyncio
    async def test_boundary_burst_is_accepted(self):
        """100 at t=59 and 100 at t=60 all pass: up to 2x the limit around a boundary."""
        store = InMemoryStateStore()
        algorithm = FixedWindow()
        policy = make_policy()

        before = [
            await algorithm.evaluate(store, "k", policy, now=59.0) for _ in range(100)
        ]
        after = [
            await algorithm.evaluate(store, "k", policy, now=60.0) for _ in range(100)
        ]

        assert all(d.allowed for d in before)
        assert all(d.allowed for d in after)
        assert before[-1].remaining == 0
        assert after[-1].reset_at == 120

    @pytest.mark.asyncio
    async def test_denied_after_capacity_with_retry_after(self):
        store = InMemoryStateStore()
        algorithm = FixedWindow()
        policy = make_policy(capacity=2)

        await algorithm.evaluate(store, "k", policy, now=10.0)
        await algorithm.evaluate(store, "k", policy, now=10.0)
        decision = await algorithm.evaluate(store, "k", policy, now=15.0)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.retry_after == pytest.approx(45.0)

    @pytest.mark.asyncio
    async def test_denied_requests_count_by_default(self):
        store = InMemoryStateStore()
        algorithm = FixedWindow()
        policy = make_policy(capacity=1)

        for _ in range(3):
            await algorithm.evaluate(store, "k", policy, now=1.0)

        raw, _ = await store.get_with_ttl("k:0")
        assert raw == "3"

    @pytest.mark.asyncio
    async def test_denied_requests_not_counted_when_disabled(self):
        store = InMemoryStateStore()
        algorithm = FixedWindow()
        policy = make_policy(capacity=1, count_denied=False)

        for _ in range(3):
            await algorithm.evaluate(store, "k", policy, now=1.0)

        raw, _ = await store.get_with_ttl("k:0")
        assert raw == "1"

    @pytest.mark.asyncio
    async def test_uncounted_denial_is_a_single_store_call(self):
        store = MagicMock(spec=StateStore)
        store.incr_within_limit = AsyncMock(return_value=(False, 1))
        store.incr_with_expiry = AsyncMock()
        policy = make_policy(capacity=1, count_denied=False)

        decision = await FixedWindow().evaluate(store, "k", policy, now=1.0)

        assert decision.allowed is False
        assert decision.remaining == 0
        store.incr_within_limit.assert_awaited_once_with("k:0", 1, 1, 60)
        store.incr_with_expiry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cost_is_counted(self):
        store = InMemoryStateStore()
        algorithm = FixedWindow()
        policy = make_policy(capacity=10)

        decision = await algorithm.evaluate(store, "k", policy, now=1.0, cost=7)
        assert decision.allowed is True
        assert decision.remaining == 3

        decision = await algorithm.evaluate(store, "k", policy, now=1.0, cost=4)
        assert decision.allowed is False
