"""Three-state circuit breaker."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from ..errors import CircuitOpenError
from .config import CircuitBreakerConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerStats:
    """Snapshot of breaker state."""

    state: CircuitState
    consecutive_failures: int
    last_failure_time: Optional[float]


class CircuitBreaker:
    """
    Isolate a failing upstream.

    CLOSED passes every call. After ``failure_threshold`` consecutive
    failures the breaker is OPEN and rejects calls with CircuitOpenError.
    Once ``reset_timeout_ms`` has passed since the last failure, the next
    inspection moves it to HALF_OPEN, where up to ``half_open_requests``
    probes may run. A successful probe closes the circuit; a failed one
    reopens it and restarts the timer.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: Optional[float] = None
        self._probes_in_flight = 0

    def _refresh_state(self) -> None:
        if self._state is CircuitState.OPEN and self._last_failure_time is not None:
            elapsed_ms = (self._clock() - self._last_failure_time) * 1000.0
            if elapsed_ms >= self.config.reset_timeout_ms:
                self._state = CircuitState.HALF_OPEN
                self._probes_in_flight = 0
                logger.info("circuit_half_open", elapsed_ms=round(elapsed_ms))

    @property
    def state(self) -> CircuitState:
        self._refresh_state()
        return self._state

    def get_stats(self) -> CircuitBreakerStats:
        self._refresh_state()
        return CircuitBreakerStats(
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            last_failure_time=self._last_failure_time,
        )

    def _record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("circuit_closed", previous_state=self._state.value)
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED
        self._probes_in_flight = 0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = self._clock()
        self._probes_in_flight = 0

        if (
            self._state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.config.failure_threshold
        ):
            if self._state is not CircuitState.OPEN:
                logger.warning(
                    "circuit_opened",
                    consecutive_failures=self._consecutive_failures,
                    failure_threshold=self.config.failure_threshold,
                )
            self._state = CircuitState.OPEN

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` unless the circuit is open.

        Args:
            fn: Zero-argument coroutine function

        Returns:
            Whatever ``fn`` returns

        Raises:
            CircuitOpenError: If the call was rejected
            Exception: Any error raised by ``fn``, unchanged
        """
        self._refresh_state()

        if self._state is CircuitState.OPEN:
            raise CircuitOpenError()

        is_probe = self._state is CircuitState.HALF_OPEN
        if is_probe:
            if self._probes_in_flight >= self.config.half_open_requests:
                raise CircuitOpenError("Circuit breaker is half-open, probe in progress")
            self._probes_in_flight += 1

        try:
            result = await fn()
        except Exception:
            self._record_failure()
            raise
        finally:
            # Cancelled probes release their slot without counting as a failure
            if is_probe and self._probes_in_flight > 0:
                self._probes_in_flight -= 1

        self._record_success()
        return result
