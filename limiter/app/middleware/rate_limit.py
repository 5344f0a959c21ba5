"""Rate limiting middleware.

Embeds the limiter in any Starlette/FastAPI application: every request is
resolved to a policy and evaluated before it reaches the route, and the
standard rate limit headers are added to every response.
"""

import hashlib
from typing import Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from limiter.app.core.config import settings
from limiter.app.core.logging import get_log_context, get_logger
from limiter.app.models import ClientKey
from limiter.app.services.encoder import encode_decision, to_response
from limiter.app.services.policy.resolver import PolicyResolver, get_policy_resolver
from limiter.app.services.rate_limit import RateLimitService, get_rate_limit_service

logger = get_logger(__name__)

DEFAULT_EXEMPT_PATHS = ("/health", "/metrics", "/stats")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Rate limits are applied per API key if available, otherwise per IP,
    scoped to the endpoint class derived from the request path.
    """

    def __init__(
        self,
        app,
        service: Optional[RateLimitService] = None,
        resolver: Optional[PolicyResolver] = None,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
        endpoint_depth: int = 2,
    ):
        """Initialize the middleware.

        Args:
            app: ASGI application
            service: Limiter core (defaults to the global service)
            resolver: Policy resolver (defaults to the global resolver)
            exempt_paths: Paths never rate limited
            endpoint_depth: Leading path segments forming the endpoint class
        """
        super().__init__(app)
        self._service = service
        self._resolver = resolver
        self.exempt_paths = frozenset(exempt_paths)
        self.endpoint_depth = endpoint_depth

    @property
    def service(self) -> RateLimitService:
        return self._service or get_rate_limit_service()

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver or get_policy_resolver()

    def _get_client_id(self, request: Request) -> str:
        """Get the client identifier for the request.

        Uses API key if available, otherwise falls back to IP address.
        Both are hashed using SHA-256 so raw keys and addresses are never
        stored or logged.

        Raises:
            ValueError: the API key exceeds settings.max_api_key_length
        """
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            api_key = auth[7:].strip()
            if len(api_key) > settings.max_api_key_length:
                raise ValueError(
                    f"API key too long (max {settings.max_api_key_length} characters)"
                )
            # 32 hex chars (128 bits) for collision resistance
            key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
            return f"apikey:{key_hash}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded and settings.trust_forwarded_for:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"

        ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
        return f"ip:{ip_hash}"

    def _get_endpoint_class(self, request: Request) -> str:
        """Endpoint class from the leading path segments, e.g. /v1/search."""
        segments = [s for s in request.url.path.split("/") if s]
        if not segments:
            return "/"
        return "/" + "/".join(segments[: self.endpoint_depth])

    def _get_client_key(self, request: Request) -> ClientKey:
        tier = request.headers.get(settings.tier_header) or None
        return ClientKey(
            client_id=self._get_client_id(request),
            endpoint_class=self._get_endpoint_class(request),
            tier=tier,
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        try:
            client_key = self._get_client_key(request)
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "invalid_request", "message": str(e)},
            )

        policy = self.resolver.resolve(
            client_key.client_id, client_key.endpoint_class, client_key.tier
        )
        decision = await self.service.evaluate(client_key, policy)
        encoded = encode_decision(decision)

        if not decision.allowed:
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(
                    client_id=client_key.client_id,
                    endpoint=client_key.endpoint_class,
                    tier=client_key.tier,
                    policy=policy.name,
                    path=request.url.path,
                    method=request.method,
                ),
            )
            return to_response(encoded)

        response = await call_next(request)
        for name, value in encoded.headers.items():
            response.headers[name] = value
        return response
