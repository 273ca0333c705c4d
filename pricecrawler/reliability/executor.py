"""Composed rate limit, retry and circuit breaker wrapper."""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from .circuit_breaker import CircuitBreaker
from .config import ReliabilityConfig
from .rate_limiter import RateLimiter
from .retry import retry_with_backoff

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ReliabilityExecutor:
    """
    Wrap upstream calls in rate limiting, retry and circuit breaking.

    Each ``execute`` acquires one rate-limit slot, then retries the call
    through the circuit breaker. Retries are paced by backoff only, so a
    logical operation consumes exactly one slot however many attempts it
    takes. Share one instance across workers to keep one global budget.
    """

    def __init__(
        self,
        config: Optional[ReliabilityConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize executor.

        Args:
            config: Reliability settings (defaults apply when None)
            rate_limiter: Pre-built limiter, e.g. with a fake clock in tests
            circuit_breaker: Pre-built breaker
            sleep: Async sleep used for retry backoff
        """
        self.config = config or ReliabilityConfig()
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limiter)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.config.circuit_breaker)
        self._sleep = sleep

    async def execute(self, fn: Callable[[], Awaitable[T]], operation: str = "operation") -> T:
        """
        Execute ``fn`` with rate limiting, retries and circuit breaking.

        Args:
            fn: Zero-argument coroutine function performing the upstream call
            operation: Label used in log events

        Returns:
            Value returned by ``fn``

        Raises:
            Exception: The final error once retries are exhausted or the
                error is not retryable
        """
        start_time = time.monotonic()

        await self.rate_limiter.acquire()
        limiter_stats = self.rate_limiter.get_stats()
        logger.debug(
            "rate_limiter_acquired",
            operation=operation,
            requests_in_window=limiter_stats.requests_in_window,
            current_delay_ms=round(limiter_stats.current_delay_ms, 1),
        )

        result = await retry_with_backoff(
            lambda: self.circuit_breaker.execute(fn),
            self.config.retry,
            sleep=self._sleep,
        )

        duration_ms = int((time.monotonic() - start_time) * 1000)
        circuit_state = self.circuit_breaker.state.value

        if result.success:
            logger.info(
                "operation_succeeded",
                operation=operation,
                attempts=result.attempts,
                duration_ms=duration_ms,
                circuit_state=circuit_state,
            )
            return result.value

        logger.error(
            "operation_failed",
            operation=operation,
            attempts=result.attempts,
            duration_ms=duration_ms,
            error=str(result.error),
            error_type=type(result.error).__name__,
            circuit_state=circuit_state,
        )
        raise result.error
