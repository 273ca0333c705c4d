"""Tests for access token lifecycle."""

import asyncio

import pytest

from pricecrawler.token import (
    TOKEN_REFRESH_THRESHOLD_SECONDS,
    TokenManager,
    is_token_expiring_soon,
)


class TestIsTokenExpiringSoon:
    def test_no_token(self):
        assert is_token_expiring_soon(None, now=100.0) is True

    def test_fresh_token(self):
        assert is_token_expiring_soon(100.0, now=100.0 + 60) is False

    def test_at_threshold(self):
        assert is_token_expiring_soon(100.0, now=100.0 + TOKEN_REFRESH_THRESHOLD_SECONDS) is True


class TestTokenManager:
    """Test TokenManager refresh behaviour."""

    @pytest.mark.asyncio
    async def test_proactive_refresh_only_when_due(self, clock):
        manager = TokenManager(clock=clock)
        manager.set("first")
        fetched = []

        async def fetch():
            fetched.append(1)
            return f"token-{len(fetched)}"

        assert await manager.refresh(fetch) == "first"
        assert fetched == []

        clock.advance(TOKEN_REFRESH_THRESHOLD_SECONDS)
        assert manager.is_expiring_soon() is True
        assert await manager.refresh(fetch) == "token-1"
        assert manager.refresh_count == 1
        assert manager.is_expiring_soon() is False

    @pytest.mark.asyncio
    async def test_forced_refresh(self, clock):
        manager = TokenManager(clock=clock)
        manager.set("first")

        async def fetch():
            return "second"

        assert await manager.refresh(fetch, force=True) == "second"
        assert manager.token == "second"

    @pytest.mark.asyncio
    async def test_concurrent_forced_refreshes_fetch_once(self, clock):
        """Workers that saw the same rejected token share one refresh."""
        manager = TokenManager(clock=clock)
        manager.set("stale")
        fetched = []

        async def fetch():
            fetched.append(1)
            await asyncio.sleep(0)
            return "fresh"

        tokens = await asyncio.gather(*(manager.refresh(fetch, force=True) for _ in range(3)))

        assert fetched == [1]
        assert tokens == ["fresh", "fresh", "fresh"]
        assert manager.refresh_count == 1
