"""Client-side companion to the rate limiting service."""

from limiter.client.adaptive import (
    AdaptiveRateLimitedClient,
    AdaptiveRateLimiter,
    AdaptiveState,
    parse_retry_after,
)

__all__ = [
    "AdaptiveRateLimitedClient",
    "AdaptiveRateLimiter",
    "AdaptiveState",
    "parse_retry_after",
]
