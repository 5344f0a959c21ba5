"""Core utilities for the rate limiting service."""

from limiter.app.core.circuit_breaker import CircuitBreaker, CircuitState
from limiter.app.core.config import settings
from limiter.app.core.local_cache import LocalDenyCache
from limiter.app.core.logging import get_logger, setup_logging
from limiter.app.core.metrics import (
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "LocalDenyCache",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
    "settings",
    "get_logger",
    "setup_logging",
]
