"""Client-side adaptive rate limiting.

Throttles outgoing calls based on the 429 responses a rate limited server
returns, using additive-increase / multiplicative-decrease:

- NORMAL: sending at the configured ceiling
- BACKED_OFF: every 429 multiplies the rate by `decrease_factor`
  (never below `min_rate`)
- RECOVERING: each adjustment interval whose success rate reaches
  `low_water` adds `increase_step * ceiling` back

An interval whose success rate reaches `high_water` restores the ceiling
and returns to NORMAL. The limiter is advisory: the server stays
authoritative.
"""

import asyncio
import time
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from limiter.app.core.logging import get_logger

logger = get_logger(__name__)


class AdaptiveState(str, Enum):
    """Adaptive limiter states."""
    NORMAL = "normal"
    BACKED_OFF = "backed_off"
    RECOVERING = "recovering"


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header (delay seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)


class AdaptiveRateLimiter:
    """AIMD send-rate controller with request pacing.

    Example:
        >>> limiter = AdaptiveRateLimiter(max_rate=10.0)
        >>> await limiter.acquire()
        >>> limiter.on_response(response.status_code, retry_after)
    """

    def __init__(
        self,
        max_rate: float,
        min_rate: Optional[float] = None,
        decrease_factor: float = 0.5,
        increase_step: float = 0.1,
        low_water: float = 0.5,
        high_water: float = 0.95,
        adjust_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the adaptive limiter.

        Args:
            max_rate: Ceiling in requests per second
            min_rate: Floor in requests per second (default: 1% of the ceiling)
            decrease_factor: Rate multiplier applied on each 429
            increase_step: Fraction of the ceiling added per recovering interval
            low_water: Success rate an interval needs to start recovering
            high_water: Success rate an interval needs to return to NORMAL
            adjust_interval: Seconds per success-rate evaluation
            clock: Monotonic time source
            sleep: Coroutine used to wait between sends

        Raises:
            ValueError: If any parameter is out of range.
        """
        if max_rate <= 0:
            raise ValueError("max_rate must be greater than 0")
        if min_rate is None:
            min_rate = max_rate * 0.01
        if not 0 < min_rate <= max_rate:
            raise ValueError("min_rate must be in (0, max_rate]")
        if not 0 < decrease_factor < 1:
            raise ValueError("decrease_factor must be between 0 and 1 (exclusive)")
        if not 0 < increase_step <= 1:
            raise ValueError("increase_step must be in (0, 1]")
        if not 0 <= low_water <= high_water <= 1:
            raise ValueError("require 0 <= low_water <= high_water <= 1")
        if adjust_interval <= 0:
            raise ValueError("adjust_interval must be greater than 0")

        self.ceiling = float(max_rate)
        self.min_rate = float(min_rate)
        self.decrease_factor = decrease_factor
        self.increase_step = increase_step
        self.low_water = low_water
        self.high_water = high_water
        self.adjust_interval = adjust_interval
        self._clock = clock
        self._sleep = sleep

        self.state = AdaptiveState.NORMAL
        self.rate = self.ceiling
        self._next_send_at = clock()
        self._interval_start = clock()
        self._interval_total = 0
        self._interval_successes = 0

    def reserve(self) -> float:
        """Claim the next send slot and return how long to wait for it."""
        now = self._clock()
        slot = max(now, self._next_send_at)
        self._next_send_at = slot + 1.0 / self.rate
        return slot - now

    async def acquire(self) -> None:
        """Wait until the next request may be sent."""
        delay = self.reserve()
        if delay > 0:
            await self._sleep(delay)

    def on_response(self, status_code: int, retry_after: Optional[float] = None) -> None:
        """Feed back the outcome of a request."""
        if status_code == 429:
            self.on_rate_limited(retry_after)
        else:
            self.on_success()

    def on_success(self) -> None:
        self._interval_total += 1
        self._interval_successes += 1
        self._maybe_adjust()

    def on_rate_limited(self, retry_after: Optional[float] = None) -> None:
        """Multiplicative decrease after a 429."""
        self._interval_total += 1
        self._maybe_adjust()

        old_rate = self.rate
        self.rate = max(self.min_rate, self.rate * self.decrease_factor)
        self.state = AdaptiveState.BACKED_OFF

        now = self._clock()
        self._next_send_at = max(self._next_send_at, now + 1.0 / self.rate)
        if retry_after:
            self._next_send_at = max(self._next_send_at, now + retry_after)

        logger.warning(
            f"Rate limited by server: send rate reduced from {old_rate:.2f}/s "
            f"to {self.rate:.2f}/s"
        )

    def _maybe_adjust(self) -> None:
        now = self._clock()
        if now - self._interval_start < self.adjust_interval:
            return

        if self.state != AdaptiveState.NORMAL and self._interval_total > 0:
            success_rate = self._interval_successes / self._interval_total
            if success_rate >= self.high_water:
                self.rate = self.ceiling
                self.state = AdaptiveState.NORMAL
                logger.info(f"Send rate restored to {self.rate:.2f}/s")
            elif success_rate >= self.low_water:
                self.rate = min(self.ceiling, self.rate + self.increase_step * self.ceiling)
                self.state = (
                    AdaptiveState.NORMAL
                    if self.rate >= self.ceiling
                    else AdaptiveState.RECOVERING
                )

        self._interval_start = now
        self._interval_total = 0
        self._interval_successes = 0

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "rate": round(self.rate, 4),
            "ceiling": self.ceiling,
        }


class AdaptiveRateLimitedClient:
    """httpx.AsyncClient wrapper that paces requests with an AdaptiveRateLimiter.

    429 responses are returned to the caller after the limiter has been
    adjusted; retrying is left to the caller.

    Example:
        >>> async with AdaptiveRateLimitedClient(
        ...     AdaptiveRateLimiter(max_rate=20.0),
        ...     base_url="https://api.example.com",
        ... ) as client:
        ...     response = await client.get("/v1/items")
    """

    def __init__(
        self,
        limiter: AdaptiveRateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        **client_kwargs: Any,
    ):
        self.limiter = limiter
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(**client_kwargs)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.limiter.acquire()
        response = await self._client.request(method, url, **kwargs)
        self.limiter.on_response(
            response.status_code,
            parse_retry_after(response.headers.get("Retry-After")),
        )
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AdaptiveRateLimitedClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
