"""Tests for retry with backoff and error classification."""

import asyncio

import pytest

from pricecrawler.errors import (
    AuthenticationError,
    CircuitOpenError,
    ClientError,
    ProductValidationError,
    ServerError,
    TokenExpiredError,
)
from pricecrawler.reliability import RetryConfig, is_retryable_error, retry_with_backoff
from pricecrawler.reliability.retry import calculate_delay_ms


class Flaky:
    """Raise the given errors in order, then return a value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestIsRetryableError:
    """Test error classification."""

    @pytest.mark.parametrize(
        "error",
        [
            ServerError("HTTP 503", status_code=503),
            TimeoutError("operation timed out"),
            asyncio.TimeoutError(),
            ConnectionError("connection reset"),
            RuntimeError("socket hang up"),
            RuntimeError("ECONNREFUSED 127.0.0.1:443"),
            RuntimeError("something unexpected"),
            CircuitOpenError(),
        ],
    )
    def test_retryable(self, error):
        """Transient and unknown errors are retried."""
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            ClientError("HTTP 404", status_code=404),
            ClientError("HTTP 429", status_code=429),
            ProductValidationError("bad record", field="price"),
            AuthenticationError("forbidden", status_code=403),
            TokenExpiredError(),
        ],
    )
    def test_not_retryable(self, error):
        """Client, validation and authentication errors fail fast."""
        assert is_retryable_error(error) is False

    def test_status_code_on_foreign_error(self):
        """Any error carrying a 4xx status_code is treated as fatal."""
        error = RuntimeError("network down")
        error.status_code = 400
        assert is_retryable_error(error) is False


class TestCalculateDelay:
    """Test exponential backoff."""

    def test_doubles_and_caps(self):
        config = RetryConfig(initial_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2)

        assert calculate_delay_ms(1, config) == 1000
        assert calculate_delay_ms(2, config) == 2000
        assert calculate_delay_ms(3, config) == 4000
        assert calculate_delay_ms(4, config) == 5000


class TestRetryWithBackoff:
    """Test retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, clock):
        """No retries and no sleeps when the call succeeds."""
        fn = Flaky([])

        result = await retry_with_backoff(fn, RetryConfig(), sleep=clock.sleep)

        assert result.success is True
        assert result.value == "ok"
        assert result.attempts == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_errors(self, clock):
        """Transient failures are retried with growing delays."""
        fn = Flaky([ServerError("HTTP 502", status_code=502), TimeoutError("timed out")])
        config = RetryConfig(max_retries=3, initial_delay_ms=1000, backoff_multiplier=2)

        result = await retry_with_backoff(fn, config, sleep=clock.sleep)

        assert result.success is True
        assert result.attempts == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, clock):
        """The last error is reported once retries are exhausted."""
        errors = [ServerError(f"HTTP 500 #{i}", status_code=500) for i in range(5)]
        fn = Flaky(errors)

        result = await retry_with_backoff(fn, RetryConfig(max_retries=2), sleep=clock.sleep)

        assert result.success is False
        assert result.attempts == 3
        assert fn.calls == 3
        assert str(result.error) == "HTTP 500 #2"
        assert len(clock.sleeps) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, clock):
        """A 4xx error ends the attempt without sleeping."""
        fn = Flaky([ClientError("HTTP 404", status_code=404)])

        result = await retry_with_backoff(fn, RetryConfig(max_retries=3), sleep=clock.sleep)

        assert result.success is False
        assert result.attempts == 1
        assert isinstance(result.error, ClientError)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_zero_retries(self, clock):
        """max_retries=0 means exactly one attempt."""
        fn = Flaky([ServerError("HTTP 500", status_code=500)])

        result = await retry_with_backoff(fn, RetryConfig(max_retries=0), sleep=clock.sleep)

        assert result.attempts == 1
        assert result.success is False
