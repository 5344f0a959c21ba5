"""Metrics endpoints and request metrics middleware."""

import time
from typing import Any

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from limiter.app.core.metrics import get_metrics_collector

router = APIRouter()


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics() -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint.

    Returns:
        Plain text response with Prometheus-formatted metrics
    """
    collector = get_metrics_collector()
    content = await collector.get_prometheus_metrics()
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def limiter_stats() -> dict[str, Any]:
    """Decision statistics for this instance."""
    collector = get_metrics_collector()
    return await collector.get_summary()


class MetricsMiddleware:
    """Middleware to collect request metrics.

    Example:
        app.add_middleware(MetricsMiddleware)
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        """Process request and collect metrics."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 200

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            duration = time.time() - start_time
            collector = get_metrics_collector()
            await collector.record_request(scope.get("path", "unknown"), duration, status_code)
