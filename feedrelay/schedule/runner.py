"""Wiring of the relay services.

Builds the sink, rate limiter, recorder, resolver, pipeline and schedule
manager from one :class:`RelayConfig` and runs them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from feedrelay.config import RelayConfig
from feedrelay.delivery.destinations import StaticDestinationResolver
from feedrelay.delivery.pipeline import DeliveryPipeline
from feedrelay.delivery.rate_limiter import RateLimiter
from feedrelay.delivery.recorder import create_recorder
from feedrelay.delivery.sink import HttpSink, OutboundSink
from feedrelay.feeds.refresher import RssFeedRefresher

from .manager import FeedRefresher, ScheduleManager
from .models import CycleResult, Schedule

logger = logging.getLogger(__name__)


def build_manager(
    config: RelayConfig,
    schedules: Sequence[Schedule],
    *,
    test_runs: bool | None = None,
    sink: OutboundSink | None = None,
    refresher: FeedRefresher | None = None,
) -> ScheduleManager:
    """Construct a :class:`ScheduleManager` with its collaborators.

    Every feed destination in ``schedules`` is registered with the resolver.
    """
    resolver = StaticDestinationResolver(
        feed.destination for schedule in schedules for feed in schedule.feeds
    )
    pipeline = DeliveryPipeline(
        config,
        sink=sink or HttpSink(config.bot.token),
        rate_limiter=RateLimiter(config.feeds),
        recorder=create_recorder(config.database),
        resolver=resolver,
    )
    manager = ScheduleManager(
        config,
        refresher=refresher or RssFeedRefresher(config.bot, config.feeds),
        pipeline=pipeline,
        test_runs=test_runs,
    )
    manager.add_schedules(schedules)
    return manager


async def run_forever(manager: ScheduleManager, stop_event: asyncio.Event | None = None) -> None:
    """Arm the timers and run until ``stop_event`` is set or the task is cancelled."""
    stop_event = stop_event or asyncio.Event()
    manager.begin_timers()
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping schedules")
        await manager.stop()


async def run_once(manager: ScheduleManager) -> list[CycleResult]:
    """Run one cycle of every schedule, then drain the queues."""
    try:
        return await manager.run_all_once()
    finally:
        await manager.stop()
