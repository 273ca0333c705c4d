"""Access token lifecycle.

The catalog access token expires after 30 minutes; it is refreshed
proactively once it is 25 minutes old.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

TOKEN_REFRESH_THRESHOLD_SECONDS = 25 * 60


def is_token_expiring_soon(
    acquired_at: Optional[float],
    now: Optional[float] = None,
    threshold: float = TOKEN_REFRESH_THRESHOLD_SECONDS,
) -> bool:
    """
    Check whether a token should be refreshed.

    Args:
        acquired_at: Monotonic time the token was acquired, None if no token
        now: Current monotonic time (defaults to time.monotonic())
        threshold: Age in seconds after which a refresh is due

    Returns:
        True if there is no token or it is at least ``threshold`` old
    """
    if acquired_at is None:
        return True
    if now is None:
        now = time.monotonic()
    return now - acquired_at >= threshold


class TokenManager:
    """Hold the current token and serialise refreshes behind a lock."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        threshold: float = TOKEN_REFRESH_THRESHOLD_SECONDS,
    ):
        self._clock = clock
        self.threshold = threshold
        self.token: Optional[str] = None
        self.acquired_at: Optional[float] = None
        self.refresh_count = 0
        self._generation = 0
        self._lock = asyncio.Lock()

    def set(self, token: Optional[str]) -> None:
        self.token = token
        self.acquired_at = self._clock()
        self._generation += 1

    def is_expiring_soon(self) -> bool:
        return is_token_expiring_soon(self.acquired_at, self._clock(), self.threshold)

    async def refresh(
        self,
        fetch_token: Callable[[], Awaitable[Optional[str]]],
        force: bool = False,
    ) -> Optional[str]:
        """
        Refresh the token unless another task already did.

        Tasks waiting on the lock re-check after acquiring it: a proactive
        refresh is skipped once the token is fresh again, and a forced
        refresh is skipped if a new token was set while the caller waited.

        Args:
            fetch_token: Coroutine function that obtains a new token
            force: Refresh even if the token is not yet due

        Returns:
            The current token after any refresh
        """
        seen_generation = self._generation

        async with self._lock:
            if force:
                if self._generation != seen_generation:
                    return self.token
            elif not self.is_expiring_soon():
                return self.token

            logger.info("token_refresh_started", forced=force)
            token = await fetch_token()
            self.set(token)
            self.refresh_count += 1
            logger.info("token_refreshed", has_token=token is not None, refresh_count=self.refresh_count)
            return token
