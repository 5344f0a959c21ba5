"""Request and response schemas for the rate limit API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CheckRequest(BaseModel):
    """Decision request sent by an upstream gateway."""

    client_id: str = Field(..., min_length=1, max_length=512)
    endpoint: str = Field(..., min_length=1, max_length=256)
    tier: Optional[str] = Field(None, max_length=64)
    cost: int = Field(1, ge=1, le=10000, description="Units consumed by the request")


class CheckResponse(BaseModel):
    """Body returned when the request is admitted."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    policy: str


class PoliciesResponse(BaseModel):
    """Active policy snapshot."""

    version: int
    loaded_at: float
    policies: List[Dict[str, Any]]


class ReloadResponse(BaseModel):
    """Result of a policy reload."""

    status: str
    version: int
    policies: int
