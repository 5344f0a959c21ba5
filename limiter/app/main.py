from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from limiter.app.api.metrics import MetricsMiddleware, router as metrics_router
from limiter.app.api.ratelimit import router as ratelimit_router
from limiter.app.core.config import settings
from limiter.app.core.logging import get_logger, setup_logging
from limiter.app.exceptions import InvalidPolicy, NoPolicyFound, RateLimitExceeded
from limiter.app.middleware.request_id import RequestIdMiddleware, get_request_id
from limiter.app.services.encoder import encode_decision, to_response
from limiter.app.services.policy import PolicyReloader, get_policy_resolver
from limiter.app.services.rate_limit import get_rate_limit_service


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Loads the policy snapshot (a missing default or an invalid policy is
        fatal), connects the limiter to its store and starts the policy
        reloader; stops them again on shutdown.
        """
        resolver = get_policy_resolver()
        service = get_rate_limit_service()
        resolver.add_listener(service.invalidate_local_state)

        reloader: Optional[PolicyReloader] = None
        if settings.policy_file and settings.policy_reload_interval_seconds > 0:
            reloader = PolicyReloader(
                resolver,
                settings.policy_file,
                settings.policy_reload_interval_seconds,
            )
            await reloader.start()

        store_ok = await service.health_check()
        if not store_ok:
            logger.warning("State store unreachable at startup; failure policies apply")

        logger.info(
            "Application startup complete",
            extra={
                "policy_version": resolver.version,
                "store": type(service.store).__name__,
                "store_ok": store_ok,
                "debug_mode": settings.debug,
            },
        )

        yield

        if reloader is not None:
            await reloader.stop()
        await service.store.close()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Ratewarden",
        description="Distributed rate limiting service with pluggable algorithms",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(ratelimit_router)
    app.include_router(metrics_router, prefix="")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with store reachability, breaker state and policy version."""
        health_status = {"status": "ok", "components": {}}

        service = get_rate_limit_service()
        store_ok = await service.health_check()
        health_status["components"]["store"] = {
            "status": "ok" if store_ok else "error",
            "type": type(service.store).__name__,
        }
        breaker = service.breaker.get_status()
        health_status["components"]["circuit_breaker"] = breaker
        if not store_ok or breaker["state"] != "closed":
            health_status["status"] = "degraded"

        try:
            health_status["components"]["policies"] = {
                "status": "ok",
                "version": get_policy_resolver().version,
            }
        except (InvalidPolicy, NoPolicyFound) as e:
            health_status["status"] = "error"
            health_status["components"]["policies"] = {
                "status": "error",
                "error": e.message,
            }

        return health_status

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceeded
    ) -> JSONResponse:
        """Handle RateLimitExceeded and return HTTP 429 response."""
        return to_response(encode_decision(exc.decision))

    @app.exception_handler(InvalidPolicy)
    @app.exception_handler(NoPolicyFound)
    async def policy_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle policy configuration errors and return HTTP 500 response."""
        logger.error(f"Policy configuration error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "policy_configuration_error", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client, even in debug mode.
        """
        request_id = get_request_id(request)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


# Create the application instance
app = create_app()
