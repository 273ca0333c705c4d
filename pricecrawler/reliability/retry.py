"""Exponential backoff retry with error classification."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import structlog

from ..errors import AuthenticationError, ProductValidationError
from .config import RetryConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_PATTERNS = (
    "network",
    "timeout",
    "timed out",
    "etimedout",
    "econnrefused",
    "enotfound",
    "socket hang up",
    "econnreset",
)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    success: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[Exception] = None


def is_retryable_error(error: Exception) -> bool:
    """
    Decide whether an error deserves another attempt.

    Validation and authentication errors, and anything carrying a 4xx status
    code, fail immediately. 5xx errors, timeouts and connection errors are
    retried. Unknown errors default to retryable.
    """
    if isinstance(error, (ProductValidationError, AuthenticationError)):
        return False

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if 400 <= status_code < 500:
            return False
        if 500 <= status_code < 600:
            return True

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in RETRYABLE_PATTERNS):
        return True

    return True


def calculate_delay_ms(attempt: int, config: RetryConfig) -> float:
    """Backoff before retry number ``attempt`` (1-based)."""
    delay = config.initial_delay_ms * (config.backoff_multiplier ** (attempt - 1))
    return min(delay, config.max_delay_ms)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """
    Run ``fn`` up to ``1 + max_retries`` times.

    Errors never escape; the final one is returned in ``RetryResult.error``
    for the caller to re-raise.

    Args:
        fn: Zero-argument coroutine function
        config: Backoff settings (defaults apply when None)
        sleep: Async sleep taking seconds

    Returns:
        RetryResult with the value or the last error, and the attempt count
    """
    config = config or RetryConfig()
    attempts = 0
    last_error: Optional[Exception] = None

    while attempts <= config.max_retries:
        attempts += 1
        try:
            value = await fn()
            return RetryResult(success=True, attempts=attempts, value=value)
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                logger.debug(
                    "retry_not_retryable",
                    attempt=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                break

            if attempts > config.max_retries:
                break

            delay_ms = calculate_delay_ms(attempts, config)
            logger.warning(
                "retry_scheduled",
                attempt=attempts,
                max_retries=config.max_retries,
                delay_ms=delay_ms,
                error=str(e),
                error_type=type(e).__name__,
            )
            await sleep(delay_ms / 1000.0)

    return RetryResult(success=False, attempts=attempts, error=last_error)
