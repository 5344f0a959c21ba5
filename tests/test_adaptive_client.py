"""Tests for the client-side adaptive rate limiter."""

from email.utils import parsedate_to_datetime

import httpx
import pytest

from limiter.app.core.logging import get_logger
from limiter.client import (
    AdaptiveRateLimitedClient,
    AdaptiveRateLimiter,
    AdaptiveState,
    parse_retry_after,
)
from limiter.client import adaptive as adaptive_module


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def limiter(clock, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return AdaptiveRateLimiter(max_rate=10.0, clock=clock, sleep=fake_sleep)


class TestParseRetryAfter:
    """Tests for Retry-After parsing."""

    def test_delay_seconds(self):
        assert parse_retry_after("5") == 5.0
        assert parse_retry_after(" 1.5 ") == 1.5
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self):
        value = "Wed, 21 Oct 2015 07:28:00 GMT"
        now = parsedate_to_datetime(value).timestamp() - 10
        assert parse_retry_after(value, now=now) == pytest.approx(10.0)

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None


class TestAdaptiveRateLimiter:
    """Tests for AIMD behavior and pacing."""

    def test_paces_at_configured_rate(self, limiter):
        delays = [limiter.reserve() for _ in range(3)]
        assert delays == [0.0, pytest.approx(0.1), pytest.approx(0.2)]

    def test_backs_off_after_repeated_429(self, limiter):
        for _ in range(3):
            limiter.on_response(429)

        assert limiter.state == AdaptiveState.BACKED_OFF
        assert limiter.rate <= 0.5 * limiter.ceiling
        assert limiter.rate == pytest.approx(1.25)
        assert limiter.reserve() == pytest.approx(1 / 1.25)

    def test_logs_under_limiter_hierarchy(self):
        assert adaptive_module.logger is get_logger("limiter.client.adaptive")
        assert adaptive_module.logger.name.startswith("limiter.")

    def test_rate_never_below_floor(self, clock):
        limiter = AdaptiveRateLimiter(max_rate=10.0, min_rate=2.0, clock=clock)
        for _ in range(10):
            limiter.on_rate_limited()
        assert limiter.rate == 2.0

    def test_respects_retry_after(self, limiter):
        limiter.on_response(429, retry_after=30.0)
        assert limiter.reserve() == pytest.approx(30.0)

    def test_recovers_then_returns_to_normal(self, limiter, clock):
        limiter.on_rate_limited()
        assert limiter.rate == pytest.approx(5.0)

        # An interval with 3 of 4 successful requests starts recovery
        clock.now = 1.0
        limiter.on_success()
        limiter.on_success()
        clock.now = 5.0
        limiter.on_success()
        assert limiter.state == AdaptiveState.RECOVERING
        assert limiter.rate == pytest.approx(6.0)

        # A clean interval restores the ceiling
        clock.now = 6.0
        for _ in range(9):
            limiter.on_success()
        clock.now = 10.0
        limiter.on_success()
        assert limiter.state == AdaptiveState.NORMAL
        assert limiter.rate == 10.0

    def test_poor_interval_does_not_recover(self, limiter, clock):
        for _ in range(3):
            limiter.on_rate_limited()
        clock.now = 5.0
        limiter.on_success()
        assert limiter.state == AdaptiveState.BACKED_OFF
        assert limiter.rate == pytest.approx(1.25)

    @pytest.mark.asyncio
    async def test_acquire_sleeps_for_slot(self, limiter, sleeps):
        await limiter.acquire()
        await limiter.acquire()
        assert sleeps == [pytest.approx(0.1)]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_rate": 0},
            {"max_rate": 10, "min_rate": 20},
            {"max_rate": 10, "decrease_factor": 1.0},
            {"max_rate": 10, "increase_step": 0},
            {"max_rate": 10, "low_water": 0.9, "high_water": 0.5},
            {"max_rate": 10, "adjust_interval": 0},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            AdaptiveRateLimiter(**kwargs)

    def test_status(self, limiter):
        assert limiter.get_status() == {"state": "normal", "rate": 10.0, "ceiling": 10.0}


class TestAdaptiveRateLimitedClient:
    """Tests for the httpx wrapper."""

    @pytest.mark.asyncio
    async def test_adjusts_on_429_and_waits_retry_after(self, limiter, sleeps):
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json={"ok": True}),
        ])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        async with AdaptiveRateLimitedClient(
            limiter,
            transport=httpx.MockTransport(handler),
            base_url="http://limited.test",
        ) as client:
            first = await client.get("/v1/items")
            assert first.status_code == 429
            assert limiter.state == AdaptiveState.BACKED_OFF

            second = await client.get("/v1/items")
            assert second.status_code == 200

        assert sleeps == [pytest.approx(2.0)]
