"""Tests for the sliding window counter algorithm."""

import pytest

from limiter.app.algorithms import SlidingCounter, SlidingLog, weighted_count
from limiter.app.models import Algorithm, LimitPolicy
from limiter.app.store import InMemoryStateStore


def make_policy(algorithm=Algorithm.SLIDING_COUNTER, **overrides) -> LimitPolicy:
    params = dict(
        name="sc",
        algorithm=algorithm,
        capacity=10,
        window_seconds=10,
        num_buckets=10,
    )
    params.update(overrides)
    return LimitPolicy(**params)


def trailing_count(admitted, now, window):
    return sum(1 for t in admitted if now - window < t <= now)


class TestWeightedCount:
    """Tests for the estimate itself."""

    def test_oldest_bucket_weighted_by_overlap(self):
        counts = {0: 4, 5: 2, 10: 1}
        # At 25% into bucket 10, 75% of bucket 0 still overlaps the window
        assert weighted_count(counts, 10, 10, 0.25) == pytest.approx(3 + 3.0)

    def test_buckets_outside_window_ignored(self):
        assert weighted_count({0: 4}, 11, 10, 0.0) == 0


class TestSlidingCounter:
    """Tests for admission decisions."""

    def test_admits_until_limit_in_one_sub_window(self):
        algorithm = SlidingCounter()
        policy = make_policy()
        state = None
        results = []
        for _ in range(11):
            state, decision = algorithm.apply(state, policy, now=0.5)
            results.append(decision.allowed)
        assert results == [True] * 10 + [False]
        assert state == {"buckets": {"0": 10}}

    def test_retry_after_projects_estimate_forward(self):
        algorithm = SlidingCounter()
        policy = make_policy()
        state = {"buckets": {"0": 4, "1": 4, "2": 2}}

        _, decision = algorithm.apply(state, policy, now=3.0)
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(7.0)

        _, decision = algorithm.apply(state, policy, now=10.25)
        assert decision.allowed is True

    def test_expired_buckets_are_pruned(self):
        state, _ = SlidingCounter().apply(
            {"buckets": {"0": 4, "3": 1}}, make_policy(), now=12.5
        )
        assert set(state["buckets"]) == {"3", "12"}

    def test_error_bounded_by_one_sub_window(self):
        """Counter and log admit counts stay within one sub-window of traffic."""
        policy = make_policy()
        log_policy = make_policy(algorithm=Algorithm.SLIDING_LOG, name="sl")
        counter, log = SlidingCounter(), SlidingLog()
        per_sub_window = 4  # one request every 0.25s, sub-windows of 1s

        counter_state = log_state = None
        counter_admitted, log_admitted = [], []

        for i in range(int(30 / 0.25)):
            now = i * 0.25
            counter_state, decision = counter.apply(counter_state, policy, now)
            if decision.allowed:
                counter_admitted.append(now)
            log_state, decision = log.apply(log_state, log_policy, now)
            if decision.allowed:
                log_admitted.append(now)

            counter_count = trailing_count(counter_admitted, now, policy.window_seconds)
            log_count = trailing_count(log_admitted, now, policy.window_seconds)

            assert log_count <= policy.capacity
            assert counter_count <= policy.capacity + per_sub_window
            if now >= policy.window_seconds:
                assert abs(counter_count - log_count) <= per_sub_window

    @pytest.mark.asyncio
    async def test_evaluate_against_store(self):
        store = InMemoryStateStore()
        algorithm = SlidingCounter()
        policy = make_policy(capacity=2)

        assert (await algorithm.evaluate(store, "k", policy, now=0.1)).allowed is True
        assert (await algorithm.evaluate(store, "k", policy, now=0.2)).allowed is True
        decision = await algorithm.evaluate(store, "k", policy, now=0.3)
        assert decision.allowed is False
        assert decision.remaining == 0
