"""Policy configuration models.

These pydantic models describe the JSON policy file. They are converted into
immutable LimitPolicy objects when a snapshot is built.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from limiter.app.models import Algorithm, FailureMode, LimitPolicy


class PolicyMatch(BaseModel):
    """Criteria selecting the requests a policy applies to.

    Accepted shapes, most specific first: client_id + endpoint,
    tier + endpoint, endpoint alone, or nothing (the global default).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    client_id: Optional[str] = None
    tier: Optional[str] = None
    endpoint: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.client_id is None and self.tier is None and self.endpoint is None


class PolicyEntry(BaseModel):
    """One policy as written in the policy file."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=128)
    match: PolicyMatch = Field(default_factory=PolicyMatch)
    algorithm: Algorithm = Algorithm.TOKEN_BUCKET
    capacity: int
    window_seconds: float
    refill_rate: Optional[float] = None
    burst_allowance: int = 0
    num_buckets: int = 10
    failure_mode: Optional[FailureMode] = None
    count_denied: bool = True
    idle_ttl_seconds: Optional[int] = None

    def to_limit_policy(
        self,
        default_failure_mode: FailureMode = FailureMode.OPEN,
    ) -> LimitPolicy:
        """Build the validated runtime policy.

        Args:
            default_failure_mode: Used when the entry does not set one

        Raises:
            InvalidPolicy: a numeric field is out of range
        """
        return LimitPolicy(
            name=self.name,
            algorithm=self.algorithm,
            capacity=self.capacity,
            window_seconds=self.window_seconds,
            refill_rate=self.refill_rate,
            burst_allowance=self.burst_allowance,
            num_buckets=self.num_buckets,
            failure_mode=self.failure_mode or default_failure_mode,
            count_denied=self.count_denied,
            idle_ttl_seconds=self.idle_ttl_seconds,
        ).validate()


class PolicyFile(BaseModel):
    """Top-level structure of the JSON policy file."""

    policies: List[PolicyEntry] = Field(default_factory=list)
