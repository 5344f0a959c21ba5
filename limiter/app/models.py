"""Data models for rate limiting decisions.

This module contains the immutable identity and policy types resolved per
request, and the Decision returned by every algorithm.
"""

import hashlib
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from limiter.app.exceptions import InvalidPolicy


class Algorithm(str, Enum):
    """Rate limiting algorithms selectable per policy."""
    TOKEN_BUCKET = "token_bucket"
    LEAKY_BUCKET = "leaky_bucket"
    FIXED_WINDOW = "fixed_window"
    SLIDING_LOG = "sliding_log"
    SLIDING_COUNTER = "sliding_counter"


class FailureMode(str, Enum):
    """What to decide when the shared state store is unreachable."""
    OPEN = "open"      # Admit everything (best-effort limits)
    CLOSED = "closed"  # Deny everything (security-sensitive limits)


@dataclass(frozen=True)
class ClientKey:
    """Identity a rate limit is scoped to.

    Attributes:
        client_id: API key hash, authenticated user id or source IP hash
        endpoint_class: Route or endpoint group supplied by the upstream router
        tier: Optional client tier (free, pro, ...)
    """
    client_id: str
    endpoint_class: str
    tier: Optional[str] = None

    @property
    def storage_id(self) -> str:
        """Digest used in store keys so raw identifiers never reach the store."""
        raw = f"{self.client_id}\x1f{self.endpoint_class}\x1f{self.tier or ''}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]


@dataclass(frozen=True)
class LimitPolicy:
    """Concrete limit configuration for a request.

    Attributes:
        name: Unique policy name, part of every state key
        algorithm: Algorithm used to evaluate requests
        capacity: Maximum requests (or tokens) per window
        window_seconds: Window length in seconds
        refill_rate: Tokens per second for bucket algorithms
            (defaults to capacity / window_seconds)
        burst_allowance: Extra bucket room on top of capacity (bucket algorithms)
        num_buckets: Sub-windows for the sliding window counter
        failure_mode: Decision when the store is unreachable
        count_denied: Whether denied requests count toward a fixed window
        idle_ttl_seconds: Optional override of the state TTL in the store
    """
    name: str
    algorithm: Algorithm
    capacity: int
    window_seconds: float
    refill_rate: Optional[float] = None
    burst_allowance: int = 0
    num_buckets: int = 10
    failure_mode: FailureMode = FailureMode.OPEN
    count_denied: bool = True
    idle_ttl_seconds: Optional[int] = None

    def validate(self) -> "LimitPolicy":
        """Raise InvalidPolicy unless every numeric field is usable."""
        if self.capacity <= 0:
            raise InvalidPolicy("capacity must be positive", self.name)
        if self.window_seconds <= 0:
            raise InvalidPolicy("window_seconds must be positive", self.name)
        if self.refill_rate is not None and self.refill_rate <= 0:
            raise InvalidPolicy("refill_rate must be positive", self.name)
        if self.burst_allowance < 0:
            raise InvalidPolicy("burst_allowance must not be negative", self.name)
        if self.num_buckets < 1:
            raise InvalidPolicy("num_buckets must be at least 1", self.name)
        if self.idle_ttl_seconds is not None and self.idle_ttl_seconds <= 0:
            raise InvalidPolicy("idle_ttl_seconds must be positive", self.name)
        return self

    @property
    def rate(self) -> float:
        """Tokens refilled (or leaked) per second."""
        if self.refill_rate is not None:
            return self.refill_rate
        return self.capacity / self.window_seconds

    @property
    def bucket_size(self) -> int:
        """Maximum tokens held by a bucket, burst included."""
        return self.capacity + self.burst_allowance

    @property
    def limit(self) -> int:
        """Limit advertised to callers."""
        if self.algorithm in (Algorithm.TOKEN_BUCKET, Algorithm.LEAKY_BUCKET):
            return self.bucket_size
        return self.capacity

    def state_ttl(self, natural_ttl: float) -> int:
        """TTL for stored state: the override, or the algorithm's natural TTL."""
        if self.idle_ttl_seconds is not None:
            return self.idle_ttl_seconds
        return max(1, math.ceil(natural_ttl) + 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["algorithm"] = self.algorithm.value
        data["failure_mode"] = self.failure_mode.value
        return data


@dataclass
class Decision:
    """Result of evaluating one request against one policy.

    Created fresh per request and never persisted.

    Attributes:
        allowed: Whether the request is admitted
        limit: Limit advertised to the caller
        remaining: Estimated admits left right now
        reset_at: Unix time at which remaining could next increase
        retry_after: Seconds until a retry could succeed (denials only)
        window_seconds: Policy window, echoed in 429 bodies
        policy_name: Policy that produced the decision
        degraded: True when the failure policy, not the store, decided
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None
    window_seconds: float = 0.0
    policy_name: str = field(default="")
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
