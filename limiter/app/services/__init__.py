"""Services package for the rate limiter.

This package provides:
- The limiter core (RateLimitService)
- Policy loading, resolution and hot reload
- Decision encoding for HTTP responses
"""

from limiter.app.services.encoder import (
    EncodedDecision,
    encode_decision,
    rate_limit_headers,
    to_response,
)
from limiter.app.services.policy import (
    PolicyReloader,
    PolicyResolver,
    PolicySnapshot,
    get_policy_resolver,
    reset_policy_resolver,
)
from limiter.app.services.rate_limit import (
    RateLimitService,
    get_rate_limit_service,
    reset_rate_limit_service,
)

__all__ = [
    # Limiter core
    "RateLimitService",
    "get_rate_limit_service",
    "reset_rate_limit_service",
    # Policies
    "PolicyReloader",
    "PolicyResolver",
    "PolicySnapshot",
    "get_policy_resolver",
    "reset_policy_resolver",
    # Encoding
    "EncodedDecision",
    "encode_decision",
    "rate_limit_headers",
    "to_response",
]
