"""Rolling-window rate limiter with jitter."""

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

import structlog

from .config import RateLimiterConfig

logger = structlog.get_logger(__name__)

WINDOW_MS = 60_000


@dataclass
class RateLimiterStats:
    """Snapshot of limiter state."""

    requests_in_window: int
    current_delay_ms: float


class RateLimiter:
    """
    Pace outgoing calls against a requests-per-minute budget.

    Keeps timestamps (ms) of calls made in the last 60 seconds. A caller
    reserves its slot at the time it will proceed before sleeping, so several
    tasks sharing one limiter are spaced out without holding a lock.
    """

    def __init__(
        self,
        config: Optional[RateLimiterConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        """
        Initialize rate limiter.

        Args:
            config: Pacing settings (defaults apply when None)
            clock: Returns current time in seconds
            sleep: Async sleep taking seconds
            rng: Returns a float in [0, 1) for jitter
        """
        self.config = config or RateLimiterConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._timestamps: Deque[float] = deque()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _purge(self, now: float) -> None:
        cutoff = now - WINDOW_MS
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def _base_delay(self, now: float) -> float:
        """Delay in ms before the next call may proceed, without jitter."""
        if not self._timestamps:
            return 0.0

        since_last = now - self._timestamps[-1]
        spacing = max(0.0, self.config.min_delay_ms - since_last)

        if len(self._timestamps) >= self.config.requests_per_minute:
            until_oldest_expires = self._timestamps[0] + WINDOW_MS - now
            return max(until_oldest_expires, spacing)

        return spacing

    def _jitter_range(self) -> float:
        """Jitter span, narrowed so min spacing plus jitter stays within max_delay_ms."""
        headroom = max(0.0, self.config.max_delay_ms - self.config.min_delay_ms)
        return min(float(self.config.jitter_ms), headroom)

    def _delay_with_jitter(self, now: float) -> float:
        return self._base_delay(now) + self._rng() * self._jitter_range()

    async def acquire(self) -> float:
        """
        Wait until a call may proceed.

        Returns:
            Delay waited, in milliseconds
        """
        now = self._now_ms()
        self._purge(now)

        if not self._timestamps:
            self._timestamps.append(now)
            return 0.0

        delay = self._delay_with_jitter(now)
        self._timestamps.append(now + delay)

        if delay > 0:
            logger.debug(
                "rate_limit_wait",
                delay_ms=round(delay, 1),
                requests_in_window=len(self._timestamps),
            )
            await self._sleep(delay / 1000.0)

        return delay

    def get_stats(self) -> RateLimiterStats:
        """Report window occupancy and the delay a call would incur now."""
        now = self._now_ms()
        self._purge(now)
        return RateLimiterStats(
            requests_in_window=len(self._timestamps),
            current_delay_ms=self._base_delay(now),
        )
