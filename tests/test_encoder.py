"""Tests for the decision encoder."""

import json

from limiter.app.models import Decision
from limiter.app.services.encoder import (
    ERROR_CODE,
    encode_decision,
    rate_limit_headers,
    retry_after_seconds,
    to_response,
)


def make_decision(**overrides) -> Decision:
    params = dict(
        allowed=True,
        limit=100,
        remaining=42,
        reset_at=1700000000.2,
        window_seconds=60,
        policy_name="default",
    )
    params.update(overrides)
    return Decision(**params)


class TestHeaders:
    """Tests for X-RateLimit-* headers."""

    def test_allowed_headers(self):
        headers = rate_limit_headers(make_decision())
        assert headers == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "42",
            "X-RateLimit-Reset": "1700000001",
        }

    def test_negative_remaining_is_clamped(self):
        headers = rate_limit_headers(make_decision(remaining=-3))
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_denied_adds_retry_after(self):
        headers = rate_limit_headers(
            make_decision(allowed=False, remaining=0, retry_after=2.1)
        )
        assert headers["Retry-After"] == "3"

    def test_retry_after_never_below_one(self):
        assert retry_after_seconds(make_decision(allowed=False, retry_after=0.01)) == 1
        assert retry_after_seconds(make_decision(allowed=False, retry_after=None)) == 1

    def test_headers_identical_for_degraded_decisions(self):
        normal = rate_limit_headers(make_decision())
        degraded = rate_limit_headers(make_decision(degraded=True))
        assert normal == degraded


class TestEncodeDecision:
    """Tests for status codes and bodies."""

    def test_allowed_is_200_without_body(self):
        encoded = encode_decision(make_decision())
        assert encoded.status_code == 200
        assert encoded.body is None

    def test_denied_is_429_with_body(self):
        encoded = encode_decision(
            make_decision(allowed=False, remaining=0, retry_after=12.5)
        )
        assert encoded.status_code == 429
        assert encoded.body == {
            "error_code": ERROR_CODE,
            "message": "Rate limit exceeded. Retry after 13 seconds.",
            "limit": 100,
            "window": 60,
            "retry_after": 13,
        }

    def test_to_response(self):
        response = to_response(
            encode_decision(make_decision(allowed=False, remaining=0, retry_after=5))
        )
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "5"
        assert json.loads(response.body)["error_code"] == "RATE_LIMIT_EXCEEDED"
