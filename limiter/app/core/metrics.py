"""In-process metrics for rate limiting decisions.

Counters are per instance; aggregate across the fleet in the scraper.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class RequestMetrics:
    """Metrics for requests to a single path."""

    count: int = 0
    total_duration: float = 0.0
    errors: int = 0


@dataclass
class PolicyMetrics:
    """Decision counters for a single policy."""

    allowed: int = 0
    denied: int = 0
    degraded: int = 0
    cached: int = 0


@dataclass
class MetricsCollector:
    """Collects and stores limiter metrics.

    This class is coroutine-safe and collects:
    - Allowed / denied decisions per policy
    - Decisions made by the failure policy instead of the store
    - Denials served from the local deny cache
    - Store errors by type
    - HTTP request counts and latencies
    """

    _policies: Dict[str, PolicyMetrics] = field(
        default_factory=lambda: defaultdict(PolicyMetrics)
    )
    _store_errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _requests: Dict[str, RequestMetrics] = field(
        default_factory=lambda: defaultdict(RequestMetrics)
    )
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_decision(
        self,
        policy: str,
        allowed: bool,
        degraded: bool = False,
        cached: bool = False,
    ) -> None:
        """Record one decision.

        Args:
            policy: Policy name
            allowed: Whether the request was admitted
            degraded: Whether the failure policy decided
            cached: Whether the local deny cache decided
        """
        async with self._lock:
            metrics = self._policies[policy]
            if allowed:
                metrics.allowed += 1
            else:
                metrics.denied += 1
            if degraded:
                metrics.degraded += 1
            if cached:
                metrics.cached += 1

    async def record_store_error(self, error_type: str) -> None:
        """Record a store failure by exception type name."""
        async with self._lock:
            self._store_errors[error_type] += 1

    async def record_request(
        self, endpoint: str, duration: float, status_code: int
    ) -> None:
        """Record an HTTP request.

        Args:
            endpoint: The endpoint path
            duration: Request duration in seconds
            status_code: HTTP status code
        """
        async with self._lock:
            metrics = self._requests[endpoint]
            metrics.count += 1
            metrics.total_duration += duration
            if status_code >= 500:
                metrics.errors += 1

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        async with self._lock:
            total_allowed = sum(m.allowed for m in self._policies.values())
            total_denied = sum(m.denied for m in self._policies.values())
            total = total_allowed + total_denied
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "total_decisions": total,
                "allowed": total_allowed,
                "denied": total_denied,
                "deny_rate": round(total_denied / total, 4) if total > 0 else 0,
                "policies": {
                    name: {
                        "allowed": m.allowed,
                        "denied": m.denied,
                        "degraded": m.degraded,
                        "cached": m.cached,
                    }
                    for name, m in self._policies.items()
                },
                "store_errors": dict(self._store_errors),
                "requests": {
                    path: {
                        "count": m.count,
                        "errors": m.errors,
                        "avg_duration_ms": round(m.total_duration / m.count * 1000, 2)
                        if m.count > 0
                        else 0,
                    }
                    for path, m in self._requests.items()
                },
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format."""
        async with self._lock:
            lines = []

            lines.append("# HELP ratelimit_decisions_total Rate limit decisions")
            lines.append("# TYPE ratelimit_decisions_total counter")
            for name, m in self._policies.items():
                lines.append(
                    f'ratelimit_decisions_total{{policy="{name}",outcome="allowed"}} {m.allowed}'
                )
                lines.append(
                    f'ratelimit_decisions_total{{policy="{name}",outcome="denied"}} {m.denied}'
                )

            lines.append(
                "\n# HELP ratelimit_degraded_decisions_total Decisions made by the failure policy"
            )
            lines.append("# TYPE ratelimit_degraded_decisions_total counter")
            for name, m in self._policies.items():
                lines.append(
                    f'ratelimit_degraded_decisions_total{{policy="{name}"}} {m.degraded}'
                )

            lines.append(
                "\n# HELP ratelimit_cached_denials_total Denials served from the local cache"
            )
            lines.append("# TYPE ratelimit_cached_denials_total counter")
            for name, m in self._policies.items():
                lines.append(
                    f'ratelimit_cached_denials_total{{policy="{name}"}} {m.cached}'
                )

            lines.append("\n# HELP ratelimit_store_errors_total State store errors")
            lines.append("# TYPE ratelimit_store_errors_total counter")
            for error_type, count in self._store_errors.items():
                lines.append(
                    f'ratelimit_store_errors_total{{type="{error_type}"}} {count}'
                )

            lines.append("\n# HELP ratelimit_http_requests_total HTTP requests served")
            lines.append("# TYPE ratelimit_http_requests_total counter")
            for path, m in self._requests.items():
                lines.append(
                    f'ratelimit_http_requests_total{{path="{path}"}} {m.count}'
                )

            lines.append("\n# HELP ratelimit_uptime_seconds Service uptime in seconds")
            lines.append("# TYPE ratelimit_uptime_seconds gauge")
            lines.append(
                f"ratelimit_uptime_seconds {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None
