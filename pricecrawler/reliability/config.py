"""Reliability configuration models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RateLimiterConfig(BaseModel):
    """Request pacing against a per-minute budget."""

    requests_per_minute: int = Field(default=17, gt=0)
    min_delay_ms: int = Field(default=3000, ge=0)
    max_delay_ms: int = Field(default=4500, ge=0)  # upper bound on min_delay_ms + jitter
    jitter_ms: int = Field(default=500, ge=0)


class RetryConfig(BaseModel):
    """Exponential backoff settings."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds."""

    failure_threshold: int = Field(default=5, gt=0)
    reset_timeout_ms: int = Field(default=60000, ge=0)
    half_open_requests: int = Field(default=1, gt=0)


class TimeoutConfig(BaseModel):
    """Timeouts enforced by the fetch collaborator."""

    navigation_timeout_ms: int = Field(default=60000, gt=0)
    operation_timeout_ms: int = Field(default=120000, gt=0)


class ReliabilityConfig(BaseModel):
    """Complete reliability configuration."""

    rate_limiter: RateLimiterConfig = Field(default_factory=RateLimiterConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReliabilityConfig":
        """
        Build a config from the ``reliability`` section of settings.

        Missing sections and keys fall back to defaults.

        Args:
            data: Parsed settings section (may be None)

        Returns:
            Validated ReliabilityConfig
        """
        return cls.model_validate(data or {})
