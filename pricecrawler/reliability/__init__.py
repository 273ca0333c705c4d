"""Reliability layer: rate limiting, retries, circuit breaking."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerStats, CircuitState
from .config import (
    CircuitBreakerConfig,
    RateLimiterConfig,
    ReliabilityConfig,
    RetryConfig,
    TimeoutConfig,
)
from .executor import ReliabilityExecutor
from .rate_limiter import RateLimiter, RateLimiterStats
from .retry import RetryResult, is_retryable_error, retry_with_backoff

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "RateLimiter",
    "RateLimiterConfig",
    "RateLimiterStats",
    "ReliabilityConfig",
    "ReliabilityExecutor",
    "RetryConfig",
    "RetryResult",
    "TimeoutConfig",
    "is_retryable_error",
    "retry_with_backoff",
]
