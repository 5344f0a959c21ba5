"""Custom exceptions for the rate limiting service."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from limiter.app.models import Decision


class RateLimiterException(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidPolicy(RateLimiterException):
    """Raised when a policy has non-positive capacity/window or bad match criteria.

    A configuration error: fatal at load time, never raised for a request
    once a snapshot has been accepted.
    """
    status_code = 500

    def __init__(self, message: str, policy_name: Optional[str] = None):
        self.policy_name = policy_name
        if policy_name:
            message = f"Invalid policy '{policy_name}': {message}"
        super().__init__(message)


class NoPolicyFound(RateLimiterException):
    """Raised when the policy configuration has no global default."""
    status_code = 500

    def __init__(self, message: str = "No default rate limit policy configured"):
        super().__init__(message)


class StoreUnavailable(RateLimiterException):
    """Raised when the shared state store cannot serve a request.

    Absorbed by the limiter core and converted into the configured
    fail-open/fail-closed decision; never surfaced to end callers.
    """
    status_code = 503

    def __init__(self, message: str = "State store unavailable"):
        super().__init__(message)


class StoreTimeout(StoreUnavailable):
    """Raised when a store operation exceeds its deadline."""

    def __init__(self, message: str = "State store operation timed out"):
        super().__init__(message)


class ConnectionLost(StoreUnavailable):
    """Raised when the connection to the store is lost."""

    def __init__(self, message: str = "State store connection lost"):
        super().__init__(message)


class StoreContention(StoreUnavailable):
    """Raised when compare-and-swap keeps losing races for a single key."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Compare-and-swap on '{key}' lost {attempts} races")


class KeyExpiredConcurrently(RateLimiterException):
    """Raised by compare-and-swap when the expected key expired underneath it.

    Not an error: the limiter core treats the key as having no prior usage.
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key '{key}' expired during compare-and-swap")


class RateLimitExceeded(RateLimiterException):
    """Raised when a request is denied by its rate limit policy.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, decision: "Decision"):
        self.decision = decision
        message = "Rate limit exceeded"
        if decision.retry_after is not None:
            message += f". Retry after {decision.retry_after:.2f}s."
        super().__init__(message)
