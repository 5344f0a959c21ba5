"""Circuit breaker guarding the shared state store.

While the breaker is open the limiter stops calling the store and applies
the configured failure mode immediately, so a struggling store is not
hammered by every request on the hot path.
"""

import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from limiter.app.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Store calls are skipped
    HALF_OPEN = "half_open"  # Trying the store again


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    CLOSED -> OPEN after `failure_threshold` consecutive failures.
    OPEN -> HALF_OPEN once `recovery_timeout` seconds have passed.
    HALF_OPEN -> CLOSED on a successful trial call, back to OPEN on a failed one.

    All methods are synchronous and never await, so they are atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(
        self,
        name: str = "state_store",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the circuit breaker.

        Args:
            name: Name used in logs and status output
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds to stay open before a trial call
            half_open_max_calls: Concurrent trial calls allowed while half-open
            clock: Monotonic time source
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout elapsed."""
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            logger.info(f"Circuit '{self.name}' half-open, trying store")
        return self._state

    def allow_request(self) -> bool:
        """Return True if the protected call may be attempted now."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' closed, store recovered")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = None

    def record_failure(self) -> None:
        """Record a failed call, opening the circuit when warranted."""
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.failure_threshold
        ):
            self._open()

    def release(self) -> None:
        """Give back a half-open trial slot whose call ended without an outcome.

        Used when the protected call was cancelled or failed for a reason
        unrelated to the store, so the next request can try instead.
        """
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0
        logger.warning(
            f"Circuit '{self.name}' opened after {self._failure_count} failures; "
            f"skipping store for {self.recovery_timeout}s"
        )

    def retry_after(self) -> float:
        """Seconds until the next trial call is allowed (0 when not open)."""
        if self.state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = None

    def get_status(self) -> Dict[str, Any]:
        """Get breaker status for health and metrics output."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "retry_after": round(self.retry_after(), 3),
        }
