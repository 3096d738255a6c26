"""Tests for feedrelay/delivery/rate_limiter.py."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from feedrelay.config import FeedSettings
from feedrelay.delivery.errors import RateLimitedError
from feedrelay.delivery.models import RenderedMessage
from feedrelay.delivery.rate_limiter import (
    DESTINATION,
    FEED,
    GLOBAL,
    RateLimiter,
    day_start,
    window_start,
)


def _message(destination: str = "chan-1", feed: str = "feed-1") -> RenderedMessage:
    return RenderedMessage(
        passed_filters=True,
        payloads=({"content": "hi"},),
        feed_id=feed,
        destination_id=destination,
    )


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestWindows:
    """Tests for window boundary helpers."""

    def test_day_start(self) -> None:
        """Day starts at midnight UTC."""
        now = datetime(2024, 3, 5, 17, 42, 9, tzinfo=timezone.utc)
        assert day_start(now) == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_window_start_aligned(self) -> None:
        """Windows are aligned to multiples of their length."""
        now = datetime(2024, 3, 5, 17, 42, 9, tzinfo=timezone.utc)
        assert window_start(now, timedelta(minutes=10)) == datetime(
            2024, 3, 5, 17, 40, tzinfo=timezone.utc
        )


class TestRateLimiter:
    """Tests for RateLimiter admission."""

    def test_zero_limits_are_unlimited(self) -> None:
        """With every limit at zero nothing is ever rejected."""
        limiter = RateLimiter(FeedSettings())

        async def run() -> None:
            for _ in range(100):
                await limiter.assert_within_limits(_message())

        asyncio.run(run())
        assert limiter.snapshot() == {}

    def test_daily_destination_limit(self) -> None:
        """The per-destination daily cap rejects the extra article."""
        limiter = RateLimiter(FeedSettings(article_daily_channel_limit=2))

        async def run() -> None:
            await limiter.assert_within_limits(_message())
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError) as excinfo:
                await limiter.assert_within_limits(_message())
            assert excinfo.value.scope == DESTINATION
            assert excinfo.value.key == "chan-1"
            # Other destinations have their own budget
            await limiter.assert_within_limits(_message(destination="chan-2"))

        asyncio.run(run())

    def test_global_limit_checked_first(self) -> None:
        """The global scope is reported when several scopes are exhausted."""
        limiter = RateLimiter(FeedSettings(article_rate_limit=1, article_daily_channel_limit=1))

        async def run() -> None:
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError) as excinfo:
                await limiter.assert_within_limits(_message())
            assert excinfo.value.scope == GLOBAL

        asyncio.run(run())

    def test_feed_limit(self) -> None:
        """The per-feed cap only applies to its feed."""
        limiter = RateLimiter(FeedSettings(article_feed_limit=1))

        async def run() -> None:
            await limiter.assert_within_limits(_message(feed="f1"))
            await limiter.assert_within_limits(_message(feed="f2"))
            with pytest.raises(RateLimitedError) as excinfo:
                await limiter.assert_within_limits(_message(feed="f1"))
            assert excinfo.value.scope == FEED

        asyncio.run(run())

    def test_rejection_consumes_nothing(self) -> None:
        """A rejected message does not use up budget in earlier scopes."""
        limiter = RateLimiter(FeedSettings(article_rate_limit=5, article_daily_channel_limit=1))

        async def run() -> None:
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError):
                await limiter.assert_within_limits(_message())

        asyncio.run(run())
        snapshot = limiter.snapshot()
        assert snapshot["global:*"]["used"] == 1
        assert snapshot["destination:chan-1"]["used"] == 1

    def test_daily_reset_at_midnight(self) -> None:
        """Daily counters clear once the UTC day changes."""
        clock = Clock(datetime(2024, 1, 1, 23, 59, tzinfo=timezone.utc))
        limiter = RateLimiter(FeedSettings(article_daily_channel_limit=1), clock=clock)

        async def run() -> None:
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError):
                await limiter.assert_within_limits(_message())
            clock.now = datetime(2024, 1, 2, 0, 0, 1, tzinfo=timezone.utc)
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError):
                await limiter.assert_within_limits(_message())

        asyncio.run(run())

    def test_global_window_reset(self) -> None:
        """The global counter clears when the refresh window rolls over."""
        clock = Clock(datetime(2024, 1, 1, 12, 9, tzinfo=timezone.utc))
        limiter = RateLimiter(
            FeedSettings(article_rate_limit=1, refresh_rate_minutes=10),
            clock=clock,
        )

        async def run() -> None:
            await limiter.assert_within_limits(_message())
            with pytest.raises(RateLimitedError):
                await limiter.assert_within_limits(_message())
            clock.now = datetime(2024, 1, 1, 12, 10, tzinfo=timezone.utc)
            await limiter.assert_within_limits(_message())

        asyncio.run(run())

    def test_concurrent_admissions_respect_last_unit(self) -> None:
        """Only one of many concurrent checks gets the last unit of budget."""
        limiter = RateLimiter(FeedSettings(article_daily_channel_limit=1))

        async def attempt() -> bool:
            try:
                await limiter.assert_within_limits(_message())
            except RateLimitedError:
                return False
            return True

        async def run() -> list[bool]:
            return await asyncio.gather(*(attempt() for _ in range(20)))

        results = asyncio.run(run())
        assert results.count(True) == 1
        assert results.count(False) == 19
