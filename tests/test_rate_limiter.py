"""Tests for the rolling-window rate limiter."""

import asyncio

import pytest

from pricecrawler.reliability import RateLimiter, RateLimiterConfig


def make_limiter(clock, rng=lambda: 0.0, **config):
    return RateLimiter(RateLimiterConfig(**config), clock=clock, sleep=clock.sleep, rng=rng)


class TestRateLimiter:
    """Test RateLimiter pacing."""

    @pytest.mark.asyncio
    async def test_first_call_is_immediate(self, clock):
        """The first call never waits."""
        limiter = make_limiter(clock)

        delay = await limiter.acquire()

        assert delay == 0.0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_back_to_back_calls_are_spaced(self, clock):
        """A second call waits out the minimum spacing."""
        limiter = make_limiter(clock, min_delay_ms=3000, max_delay_ms=4500, jitter_ms=0)

        await limiter.acquire()
        delay = await limiter.acquire()

        assert delay == 3000.0
        assert clock.sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_spacing_counts_elapsed_time(self, clock):
        """Time already elapsed since the last call is subtracted."""
        limiter = make_limiter(clock, min_delay_ms=3000, max_delay_ms=4500, jitter_ms=0)

        await limiter.acquire()
        clock.advance(2.0)
        delay = await limiter.acquire()

        assert delay == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_jitter_is_added(self, clock):
        """Jitter scales with the random draw."""
        limiter = make_limiter(
            clock, rng=lambda: 0.5, min_delay_ms=3000, max_delay_ms=4500, jitter_ms=500
        )

        await limiter.acquire()
        delay = await limiter.acquire()

        assert delay == pytest.approx(3250.0)

    @pytest.mark.asyncio
    async def test_jitter_narrowed_to_max_delay(self, clock):
        """Jitter never pushes the minimum spacing past max_delay_ms."""
        limiter = make_limiter(
            clock, rng=lambda: 0.99, min_delay_ms=3000, max_delay_ms=3200, jitter_ms=500
        )

        await limiter.acquire()
        delay = await limiter.acquire()

        assert delay == pytest.approx(3198.0)

    @pytest.mark.asyncio
    async def test_full_window_waits_for_oldest_to_expire(self, clock):
        """At requests_per_minute the caller waits until the window frees a slot."""
        limiter = make_limiter(
            clock, requests_per_minute=2, min_delay_ms=0, max_delay_ms=0, jitter_ms=0
        )

        assert await limiter.acquire() == 0.0
        assert await limiter.acquire() == 0.0
        delay = await limiter.acquire()

        assert delay == pytest.approx(60_000.0)
        assert clock.sleeps == [pytest.approx(60.0)]

    @pytest.mark.asyncio
    async def test_concurrent_callers_reserve_distinct_slots(self, clock):
        """Callers arriving together are staggered instead of released at once."""
        sleeps = []

        async def yielding_sleep(seconds):
            sleeps.append(seconds)
            await asyncio.sleep(0)

        limiter = RateLimiter(
            RateLimiterConfig(min_delay_ms=1000, max_delay_ms=1000, jitter_ms=0),
            clock=clock,
            sleep=yielding_sleep,
            rng=lambda: 0.0,
        )

        await limiter.acquire()
        delays = await asyncio.gather(limiter.acquire(), limiter.acquire())

        assert delays == [pytest.approx(1000.0), pytest.approx(2000.0)]

    @pytest.mark.asyncio
    async def test_queued_callers_each_get_jitter(self, clock):
        """Every queued caller adds its own jitter, so calls never fall into a fixed period."""
        async def yielding_sleep(seconds):
            await asyncio.sleep(0)

        limiter = RateLimiter(
            RateLimiterConfig(),
            clock=clock,
            sleep=yielding_sleep,
            rng=lambda: 0.99,
        )

        await limiter.acquire()
        delays = await asyncio.gather(limiter.acquire(), limiter.acquire(), limiter.acquire())

        assert delays == [
            pytest.approx(3495.0),
            pytest.approx(6990.0),
            pytest.approx(10485.0),
        ]


class TestRateLimiterStats:
    """Test RateLimiter.get_stats."""

    @pytest.mark.asyncio
    async def test_stats_track_window(self, clock):
        """Stats count calls in the window and drop expired ones."""
        limiter = make_limiter(clock, min_delay_ms=3000, max_delay_ms=4500, jitter_ms=0)

        assert limiter.get_stats().requests_in_window == 0
        assert limiter.get_stats().current_delay_ms == 0.0

        await limiter.acquire()
        await limiter.acquire()
        stats = limiter.get_stats()
        assert stats.requests_in_window == 2
        assert stats.current_delay_ms == pytest.approx(3000.0)

        clock.advance(61)
        assert limiter.get_stats().requests_in_window == 0
