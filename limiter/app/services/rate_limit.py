"""Limiter core: evaluates requests against their policy using the shared store.

Infrastructure faults never escape this module. Store errors, timeouts and
an open circuit all turn into a deterministic allow or deny according to the
policy's failure mode.
"""

import asyncio
import time
from typing import Callable, Dict, Optional

from limiter.app.algorithms import RateLimitAlgorithm, build_algorithms
from limiter.app.core.circuit_breaker import CircuitBreaker
from limiter.app.core.local_cache import LocalDenyCache
from limiter.app.core.logging import get_log_context, get_logger
from limiter.app.core.metrics import MetricsCollector, get_metrics_collector
from limiter.app.exceptions import StoreContention, StoreUnavailable
from limiter.app.models import ClientKey, Decision, FailureMode, LimitPolicy
from limiter.app.store.base import StateStore

logger = get_logger(__name__)


class RateLimitService:
    """Decides whether requests are admitted.

    Features:
    - One algorithm instance per Algorithm, shared by every key
    - Bounded store timeout, tightened by the caller's deadline
    - Circuit breaker that skips the store while it is failing
    - Fail-open / fail-closed fallback per policy
    - Local deny cache for strict (fail-closed) policies
    """

    def __init__(
        self,
        store: StateStore,
        algorithms: Optional[Dict] = None,
        breaker: Optional[CircuitBreaker] = None,
        deny_cache: Optional[LocalDenyCache] = None,
        key_prefix: str = "ratelimit",
        timeout_seconds: float = 0.05,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the limiter core.

        Args:
            store: Shared state store consulted by every replica
            algorithms: Algorithm registry (defaults to build_algorithms())
            breaker: Circuit breaker around the store
            deny_cache: Optional local cache of strict-policy denials
            key_prefix: Prefix of every state key
            timeout_seconds: Upper bound on one evaluation's store work
            metrics: Metrics collector (defaults to the global one)
            clock: Wall clock used when the caller passes no `now`
        """
        self.store = store
        self.algorithms: Dict = algorithms or build_algorithms()
        self.breaker = breaker or CircuitBreaker()
        self.deny_cache = deny_cache
        self.key_prefix = key_prefix
        self.timeout_seconds = timeout_seconds
        self._metrics = metrics
        self._clock = clock

    @property
    def metrics(self) -> MetricsCollector:
        if self._metrics is None:
            return get_metrics_collector()
        return self._metrics

    def store_key(self, client_key: ClientKey, policy: LimitPolicy) -> str:
        """State key for a (policy, client) pair."""
        return (
            f"{self.key_prefix}:{policy.name}:{policy.algorithm.value}:"
            f"{client_key.storage_id}"
        )

    def _algorithm_for(self, policy: LimitPolicy) -> RateLimitAlgorithm:
        return self.algorithms[policy.algorithm]

    async def evaluate(
        self,
        client_key: ClientKey,
        policy: LimitPolicy,
        now: Optional[float] = None,
        cost: int = 1,
        deadline: Optional[float] = None,
    ) -> Decision:
        """Evaluate one request.

        Args:
            client_key: Identity the limit is scoped to
            policy: Resolved policy
            now: Unix time of the request (defaults to the clock)
            cost: Units consumed by the request
            deadline: Seconds the caller is still willing to wait

        Returns:
            Decision for the request

        Raises:
            InvalidPolicy: policy has a non-positive capacity or window
            ValueError: cost is less than 1
        """
        policy.validate()
        if cost < 1:
            raise ValueError("cost must be at least 1")
        if now is None:
            now = self._clock()

        key = self.store_key(client_key, policy)
        strict = policy.failure_mode == FailureMode.CLOSED

        if strict and self.deny_cache is not None:
            cached = self.deny_cache.get(key, now)
            if cached is not None:
                await self.metrics.record_decision(policy.name, False, cached=True)
                return cached

        timeout = self.timeout_seconds
        if deadline is not None:
            timeout = min(timeout, deadline)
        if timeout <= 0:
            return await self._fallback(client_key, policy, now, "deadline_exceeded")

        # Checked last: allow_request() may claim the half-open trial slot
        if not self.breaker.allow_request():
            return await self._fallback(client_key, policy, now, "circuit_open")

        algorithm = self._algorithm_for(policy)
        try:
            decision = await asyncio.wait_for(
                algorithm.evaluate(self.store, key, policy, now, cost),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self.breaker.record_failure()
            await self.metrics.record_store_error("StoreTimeout")
            return await self._fallback(client_key, policy, now, "timeout")
        except StoreContention as e:
            # The store answered every attempt: a hot key, not a store fault
            self.breaker.record_success()
            await self.metrics.record_store_error(type(e).__name__)
            logger.warning(
                f"Giving up on contended key for policy '{policy.name}': {e}",
                extra=get_log_context(
                    client_id=client_key.client_id,
                    endpoint=client_key.endpoint_class,
                    policy=policy.name,
                ),
            )
            return await self._fallback(client_key, policy, now, "contention")
        except StoreUnavailable as e:
            self.breaker.record_failure()
            await self.metrics.record_store_error(type(e).__name__)
            logger.warning(
                f"State store failed for policy '{policy.name}': {e}",
                extra=get_log_context(
                    client_id=client_key.client_id,
                    endpoint=client_key.endpoint_class,
                    policy=policy.name,
                ),
            )
            return await self._fallback(client_key, policy, now, type(e).__name__)
        except BaseException:
            # Cancelled, or failed outside the store: free any trial slot held
            self.breaker.release()
            raise

        self.breaker.record_success()

        if not decision.allowed:
            if strict and self.deny_cache is not None:
                self.deny_cache.put(key, decision, now)
            logger.debug(
                f"Request denied by '{policy.name}', retry after "
                f"{decision.retry_after or 0:.3f}s",
                extra=get_log_context(
                    client_id=client_key.client_id,
                    endpoint=client_key.endpoint_class,
                    tier=client_key.tier,
                    policy=policy.name,
                ),
            )

        await self.metrics.record_decision(policy.name, decision.allowed)
        return decision

    async def _fallback(
        self,
        client_key: ClientKey,
        policy: LimitPolicy,
        now: float,
        reason: str,
    ) -> Decision:
        """Decide without the store, following the policy's failure mode."""
        log_context = get_log_context(
            client_id=client_key.client_id,
            endpoint=client_key.endpoint_class,
            policy=policy.name,
            reason=reason,
        )

        if policy.failure_mode == FailureMode.CLOSED:
            retry_after = self.breaker.retry_after() or 1.0
            logger.warning(
                f"Rate limiting fail-closed triggered due to {reason}. Request denied.",
                extra=log_context,
            )
            decision = Decision(
                allowed=False,
                limit=policy.limit,
                remaining=0,
                reset_at=now + retry_after,
                retry_after=retry_after,
                window_seconds=policy.window_seconds,
                policy_name=policy.name,
                degraded=True,
            )
        else:
            logger.warning(
                f"Rate limiting fail-open triggered due to {reason}. "
                "Request allowed without rate limit check.",
                extra=log_context,
            )
            decision = Decision(
                allowed=True,
                limit=policy.limit,
                remaining=policy.limit,
                reset_at=now,
                window_seconds=policy.window_seconds,
                policy_name=policy.name,
                degraded=True,
            )

        await self.metrics.record_decision(
            policy.name, decision.allowed, degraded=True
        )
        return decision

    async def health_check(self) -> bool:
        """Return True if the store answers a ping."""
        return await self.store.ping()

    def invalidate_local_state(self, snapshot=None) -> None:
        """Drop every locally cached denial (e.g. after a policy reload)."""
        if self.deny_cache is not None:
            self.deny_cache.invalidate()


# Global service instance (singleton pattern)
_service_instance: Optional[RateLimitService] = None


def get_rate_limit_service(store: Optional[StateStore] = None) -> RateLimitService:
    """Get or create the global limiter service from settings.

    Args:
        store: Store to use instead of the configured one

    Returns:
        The shared RateLimitService instance
    """
    global _service_instance

    if _service_instance is not None:
        return _service_instance

    from limiter.app.core.config import settings
    from limiter.app.store import get_state_store

    deny_cache = None
    if settings.local_deny_cache_enabled:
        deny_cache = LocalDenyCache(settings.local_deny_cache_max_entries)

    _service_instance = RateLimitService(
        store=store or get_state_store(),
        algorithms=build_algorithms(settings.cas_max_attempts),
        breaker=CircuitBreaker(
            name="state_store",
            failure_threshold=settings.circuit_breaker_failure_threshold,
            recovery_timeout=settings.circuit_breaker_recovery_seconds,
            half_open_max_calls=settings.circuit_breaker_half_open_max_calls,
        ),
        deny_cache=deny_cache,
        key_prefix=settings.store_key_prefix,
        timeout_seconds=settings.store_timeout_seconds,
    )
    return _service_instance


def reset_rate_limit_service() -> None:
    """Reset the global service instance (useful for testing)."""
    global _service_instance
    _service_instance = None
