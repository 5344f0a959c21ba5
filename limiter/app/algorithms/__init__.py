"""Rate limiting algorithms.

Every algorithm implements RateLimitAlgorithm.evaluate and is selected per
policy through build_algorithms().
"""

from typing import Dict

from limiter.app.algorithms.base import RateLimitAlgorithm, cas_update
from limiter.app.algorithms.fixed_window import FixedWindow
from limiter.app.algorithms.leaky_bucket import LeakyBucket
from limiter.app.algorithms.sliding_counter import SlidingCounter, weighted_count
from limiter.app.algorithms.sliding_log import SlidingLog
from limiter.app.algorithms.token_bucket import TokenBucket
from limiter.app.models import Algorithm

__all__ = [
    "RateLimitAlgorithm",
    "TokenBucket",
    "LeakyBucket",
    "FixedWindow",
    "SlidingLog",
    "SlidingCounter",
    "build_algorithms",
    "cas_update",
    "weighted_count",
]


def build_algorithms(max_cas_attempts: int = 5) -> Dict[Algorithm, RateLimitAlgorithm]:
    """Build the algorithm registry keyed by Algorithm.

    Args:
        max_cas_attempts: Compare-and-swap attempts before giving up on a key

    Returns:
        Mapping of every Algorithm to its implementation
    """
    return {
        Algorithm.TOKEN_BUCKET: TokenBucket(max_cas_attempts),
        Algorithm.LEAKY_BUCKET: LeakyBucket(max_cas_attempts),
        Algorithm.FIXED_WINDOW: FixedWindow(),
        Algorithm.SLIDING_LOG: SlidingLog(max_cas_attempts),
        Algorithm.SLIDING_COUNTER: SlidingCounter(max_cas_attempts),
    }
