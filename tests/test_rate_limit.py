"""Tests for the fixed-window rate limiter."""

from datetime import timedelta

import pytest

from compass_agent.application.api.rate_limit import RateLimiter


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_the_limit(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)

        first = await limiter.hit("10.0.0.1")
        second = await limiter.hit("10.0.0.1")
        third = await limiter.hit("10.0.0.1")

        assert first.allowed and second.allowed
        assert second.remaining == 0
        assert not third.allowed
        assert third.headers()["Retry-After"] == str(third.retry_after)
        assert "Retry-After" not in first.headers()

    @pytest.mark.asyncio
    async def test_clients_have_separate_windows(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        await limiter.hit("a")

        assert (await limiter.hit("b")).allowed

    @pytest.mark.asyncio
    async def test_expired_window_resets(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        await limiter.hit("a")
        limiter.windows["a"]["reset_at"] -= timedelta(seconds=61)

        assert (await limiter.hit("a")).allowed

    @pytest.mark.asyncio
    async def test_clear_expired(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        await limiter.hit("a")
        await limiter.hit("b")
        limiter.windows["a"]["reset_at"] -= timedelta(seconds=61)

        assert await limiter.clear_expired() == 1
        assert set(limiter.windows) == {"b"}

    @pytest.mark.asyncio
    async def test_expired_windows_are_pruned_as_clients_arrive(self):
        limiter = RateLimiter(max_requests=1, window_seconds=0, prune_threshold=100)

        for index in range(500):
            await limiter.hit(f"10.0.{index // 256}.{index % 256}")
        await limiter.hit("10.9.9.9")

        assert len(limiter.windows) <= 101
        assert "10.9.9.9" in limiter.windows
