from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Shared state store (Redis when enabled, in-process store otherwise)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "ratelimit"
    store_timeout_seconds: float = 0.05  # Hot path: a few tens of milliseconds
    memory_store_max_entries: int = 100000
    cas_max_attempts: int = 5

    # Default policy, used when no policy file is configured
    rate_limit_requests_per_minute: int = 60
    rate_limit_burst_size: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_algorithm: str = "token_bucket"
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when the store is unavailable
    )

    # Circuit breaker around the store
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_seconds: float = 30.0
    circuit_breaker_half_open_max_calls: int = 1

    # Local deny cache (strict policies only)
    local_deny_cache_enabled: bool = True
    local_deny_cache_max_entries: int = 10000

    # Policy configuration
    policy_file: Optional[str] = None
    policy_reload_interval_seconds: float = 0.0  # 0 disables polling

    # Client identity extraction
    trust_forwarded_for: bool = True
    tier_header: str = "X-Client-Tier"
    max_api_key_length: int = 512

    @field_validator(
        "rate_limit_requests_per_minute",
        "rate_limit_burst_size",
        "rate_limit_window_seconds",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("store_timeout_seconds", "circuit_breaker_recovery_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator(
        "cas_max_attempts",
        "memory_store_max_entries",
        "circuit_breaker_failure_threshold",
        "circuit_breaker_half_open_max_calls",
        "local_deny_cache_max_entries",
    )
    @classmethod
    def validate_count_positive(cls, v: int) -> int:
        """Validate counters and sizes are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("policy_reload_interval_seconds")
    @classmethod
    def validate_reload_interval(cls, v: float) -> float:
        """Validate policy reload interval is disabled or reasonable."""
        if v < 0:
            raise ValueError("policy_reload_interval_seconds must not be negative")
        if 0 < v < 1:
            raise ValueError(
                "policy_reload_interval_seconds should be at least 1 second"
            )
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
