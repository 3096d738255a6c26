"""Quota admission for outgoing articles.

Three quota scopes are checked, in order, before an article is dispatched:

1. Global: all articles across every destination, per refresh window
2. Destination: articles per destination, per UTC day
3. Feed: articles per feed, per refresh window

A limit of zero disables the scope. Counters use fixed windows: when a check
observes that the window boundary has passed, the counter is cleared and the
new window starts at that boundary.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from feedrelay.config import FeedSettings

from .errors import RateLimitedError
from .models import RenderedMessage

GLOBAL = "global"
DESTINATION = "destination"
FEED = "feed"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuotaState:
    """Counter for one scope key within its current window."""

    limit: int
    window_start: datetime
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def day_start(now: datetime) -> datetime:
    """Midnight UTC of the day containing ``now``."""
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def window_start(now: datetime, window: timedelta) -> datetime:
    """Start of the fixed, epoch-aligned window containing ``now``."""
    elapsed = now.astimezone(timezone.utc) - _EPOCH
    return _EPOCH + (elapsed // window) * window


class RateLimiter:
    """Serialized check-then-consume admission against named quotas.

    Usage:
        limiter = RateLimiter(config.feeds)
        await limiter.assert_within_limits(message)  # raises RateLimitedError
    """

    def __init__(
        self,
        settings: FeedSettings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._global_limit = settings.article_rate_limit
        self._daily_limit = settings.article_daily_channel_limit
        self._feed_limit = settings.article_feed_limit
        self._window = timedelta(minutes=settings.refresh_rate_minutes)
        self._clock = clock or _utcnow
        self._quotas: dict[tuple[str, str], QuotaState] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def _scopes(self, message: RenderedMessage) -> list[tuple[str, str, int]]:
        scopes = [
            (GLOBAL, "*", self._global_limit),
            (DESTINATION, message.destination_id, self._daily_limit),
            (FEED, message.feed_id, self._feed_limit),
        ]
        return [scope for scope in scopes if scope[2] > 0]

    def _boundary(self, scope: str, now: datetime) -> datetime:
        if scope == DESTINATION:
            return day_start(now)
        return window_start(now, self._window)

    def _current(self, scope: str, key: str, limit: int, now: datetime) -> QuotaState:
        boundary = self._boundary(scope, now)
        state = self._quotas.get((scope, key))
        if state is None or state.window_start != boundary:
            state = QuotaState(limit=limit, window_start=boundary)
            self._quotas[(scope, key)] = state
        return state

    async def assert_within_limits(self, message: RenderedMessage) -> None:
        """Admit ``message`` or raise :class:`RateLimitedError`.

        Every scope the message consumes is locked for the duration of the
        check and the decrement. Locks are always taken in the same order,
        so concurrent admissions cannot deadlock. Nothing is consumed unless
        every scope has budget left.
        """
        scopes = self._scopes(message)
        if not scopes:
            return
        async with AsyncExitStack() as stack:
            for scope, key, _ in scopes:
                await stack.enter_async_context(self._locks[(scope, key)])
            now = self._clock()
            states = []
            for scope, key, limit in scopes:
                state = self._current(scope, key, limit, now)
                if state.remaining <= 0:
                    raise RateLimitedError(scope, key, limit)
                states.append(state)
            for state in states:
                state.used += 1

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Copy of the current counters, keyed by ``scope:key``."""
        return {
            f"{scope}:{key}": {
                "limit": state.limit,
                "used": state.used,
                "window_start": state.window_start.isoformat(),
            }
            for (scope, key), state in self._quotas.items()
        }
