"""API endpoints package for the rate limiter."""

from limiter.app.api.metrics import router as metrics_router
from limiter.app.api.ratelimit import router as ratelimit_router

__all__ = [
    "metrics_router",
    "ratelimit_router",
]
