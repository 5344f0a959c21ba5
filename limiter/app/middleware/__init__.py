"""Middleware package for the rate limiter."""

from limiter.app.middleware.rate_limit import RateLimitMiddleware
from limiter.app.middleware.request_id import (
    RequestIdMiddleware,
    current_request_id,
    get_request_id,
)

__all__ = [
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "current_request_id",
    "get_request_id",
]
