"""Decision encoder: turns a Decision into an HTTP status, headers and body.

Headers are algorithm-agnostic and never reveal whether the decision came
from the store or from the failure policy.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from limiter.app.models import Decision

ERROR_CODE = "RATE_LIMIT_EXCEEDED"


@dataclass
class EncodedDecision:
    """HTTP rendering of a Decision."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None


def retry_after_seconds(decision: Decision) -> int:
    """Whole seconds to wait, rounded up and never below one."""
    return max(1, math.ceil(decision.retry_after or 0))


def rate_limit_headers(decision: Decision) -> Dict[str, str]:
    """X-RateLimit-* headers (plus Retry-After on denial)."""
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(0, decision.remaining)),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(retry_after_seconds(decision))
    return headers


def encode_decision(decision: Decision) -> EncodedDecision:
    """Encode a decision; denials become 429 with a structured body."""
    headers = rate_limit_headers(decision)
    if decision.allowed:
        return EncodedDecision(status_code=200, headers=headers)

    retry_after = retry_after_seconds(decision)
    return EncodedDecision(
        status_code=429,
        headers=headers,
        body={
            "error_code": ERROR_CODE,
            "message": f"Rate limit exceeded. Retry after {retry_after} seconds.",
            "limit": decision.limit,
            "window": decision.window_seconds,
            "retry_after": retry_after,
        },
    )


def to_response(encoded: EncodedDecision) -> JSONResponse:
    """JSONResponse for an encoded denial."""
    return JSONResponse(
        status_code=encoded.status_code,
        content=encoded.body,
        headers=encoded.headers,
    )
