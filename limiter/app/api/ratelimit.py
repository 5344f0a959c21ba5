"""Rate limit decision and policy administration endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from limiter.app.api.schemas import (
    CheckRequest,
    CheckResponse,
    PoliciesResponse,
    ReloadResponse,
)
from limiter.app.core.config import settings
from limiter.app.core.logging import get_logger
from limiter.app.exceptions import RateLimiterException, RateLimitExceeded
from limiter.app.models import ClientKey
from limiter.app.services.encoder import encode_decision
from limiter.app.services.policy.resolver import PolicyResolver, get_policy_resolver
from limiter.app.services.rate_limit import RateLimitService, get_rate_limit_service

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/ratelimit", tags=["ratelimit"])


def limiter_service() -> RateLimitService:
    return get_rate_limit_service()


def policy_resolver() -> PolicyResolver:
    return get_policy_resolver()


@router.post("/check", response_model=CheckResponse)
async def check(
    body: CheckRequest,
    service: RateLimitService = Depends(limiter_service),
    resolver: PolicyResolver = Depends(policy_resolver),
) -> JSONResponse:
    """Decide whether one request may proceed.

    Returns 200 with the rate limit headers when admitted; denials raise
    RateLimitExceeded, rendered as 429 by the application's handler.
    """
    client_key = ClientKey(
        client_id=body.client_id,
        endpoint_class=body.endpoint,
        tier=body.tier,
    )
    policy = resolver.resolve(client_key.client_id, client_key.endpoint_class, client_key.tier)
    decision = await service.evaluate(client_key, policy, cost=body.cost)

    if not decision.allowed:
        raise RateLimitExceeded(decision)

    encoded = encode_decision(decision)
    return JSONResponse(
        status_code=encoded.status_code,
        headers=encoded.headers,
        content=CheckResponse(
            allowed=True,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            policy=decision.policy_name,
        ).model_dump(),
    )


@router.get("/policies", response_model=PoliciesResponse)
async def list_policies(
    resolver: PolicyResolver = Depends(policy_resolver),
) -> PoliciesResponse:
    """Active policy snapshot with each policy's match criteria."""
    snapshot = resolver.snapshot
    return PoliciesResponse(
        version=snapshot.version,
        loaded_at=snapshot.loaded_at,
        policies=[
            {**policy.to_dict(), "match": match.model_dump(exclude_none=True)}
            for match, policy in snapshot.rules
        ],
    )


@router.post("/policies/reload", response_model=ReloadResponse)
async def reload_policies(
    resolver: PolicyResolver = Depends(policy_resolver),
) -> ReloadResponse:
    """Reload policies from the configured policy file.

    A rejected file leaves the active snapshot untouched.
    """
    if not settings.policy_file:
        raise HTTPException(status_code=409, detail="No policy file configured")

    try:
        snapshot = resolver.reload_from_file(settings.policy_file)
    except RateLimiterException as e:
        logger.error(f"Policy reload rejected: {e}")
        raise HTTPException(status_code=422, detail=e.message)

    return ReloadResponse(
        status="reloaded",
        version=snapshot.version,
        policies=len(snapshot.rules),
    )
