"""Timer-driven refresh cycles.

The :class:`ScheduleManager` arms one timer per schedule. Every firing starts
a refresh cycle for the schedule's feeds and pushes the articles found into
the delivery pipeline. Concurrency is bounded at two levels:

1. ``advanced.parallelRuns``: schedule cycles running at once, process-wide
2. ``advanced.parallelBatches``: feed batches refreshed at once per cycle

A schedule never runs two cycles at the same time. When a timer fires while
the previous cycle is still running, that firing is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Protocol

from feedrelay.config import RelayConfig
from feedrelay.delivery.models import CandidateArticle, Feed
from feedrelay.delivery.pipeline import DeliveryPipeline

from .models import CycleResult, Schedule

logger = logging.getLogger(__name__)


class FeedRefresher(Protocol):
    async def refresh(self, feed: Feed) -> list[CandidateArticle]:
        """Return the new articles of ``feed``."""


def batched(feeds: tuple[Feed, ...], size: int) -> list[tuple[Feed, ...]]:
    """Split feeds into consecutive batches of at most ``size``."""
    return [feeds[i:i + size] for i in range(0, len(feeds), size)]


class ScheduleManager:
    """Owns the schedules and fires their refresh cycles.

    Usage:
        manager = ScheduleManager(config, refresher=refresher, pipeline=pipeline)
        manager.add_schedules(schedules)
        manager.begin_timers()
        ...
        await manager.stop()

    Args:
        config: Relay configuration.
        refresher: Produces candidate articles per feed.
        pipeline: Delivery pipeline the articles are pushed through.
        test_runs: Run every schedule once immediately when timers are armed.
            Defaults to ``bot.runSchedulesOnStart``.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        refresher: FeedRefresher,
        pipeline: DeliveryPipeline,
        test_runs: bool | None = None,
    ) -> None:
        self._refresher = refresher
        self._pipeline = pipeline
        self._test_runs = config.bot.run_schedules_on_start if test_runs is None else test_runs
        self._batch_size = config.advanced.batch_size
        self._parallel_batches = config.advanced.parallel_batches
        self._run_gate = asyncio.Semaphore(config.advanced.parallel_runs)
        self._schedules: dict[str, Schedule] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._running: dict[str, asyncio.Task[CycleResult]] = {}

    @property
    def schedules(self) -> list[Schedule]:
        return list(self._schedules.values())

    @property
    def active_runs(self) -> frozenset[str]:
        """Names of the schedules with a cycle in flight."""
        return frozenset(self._running)

    @property
    def timers_armed(self) -> bool:
        return bool(self._timers)

    def add_schedules(self, schedules: Iterable[Schedule]) -> None:
        """Register schedules. Timers are not started.

        Raises:
            RuntimeError: If timers are already armed.
            ValueError: If a schedule name is registered twice.
        """
        if self._timers:
            raise RuntimeError("Cannot add schedules after timers are armed")
        for schedule in schedules:
            if schedule.name in self._schedules:
                raise ValueError(f"Duplicate schedule name: {schedule.name}")
            self._schedules[schedule.name] = schedule

    def begin_timers(self) -> None:
        """Arm one recurring timer per schedule.

        Must be called from a running event loop. With test runs enabled,
        every schedule also runs one cycle right away.
        """
        if self._timers:
            raise RuntimeError("Timers are already armed")
        loop = asyncio.get_running_loop()
        for schedule in self._schedules.values():
            if self._test_runs:
                self._start_cycle(schedule)
            self._timers[schedule.name] = loop.create_task(
                self._timer_loop(schedule),
                name=f"schedule-timer-{schedule.name}",
            )
        logger.info("Armed timers for %d schedules", len(self._timers))

    async def _timer_loop(self, schedule: Schedule) -> None:
        while True:
            await asyncio.sleep(schedule.interval_seconds)
            if self._start_cycle(schedule) is None:
                logger.warning(
                    "Skipping cycle for schedule %s: previous cycle still running",
                    schedule.name,
                )

    def _start_cycle(self, schedule: Schedule) -> asyncio.Task[CycleResult] | None:
        if schedule.name in self._running:
            return None
        task = asyncio.get_running_loop().create_task(
            self._run_cycle(schedule),
            name=f"schedule-cycle-{schedule.name}",
        )
        self._running[schedule.name] = task
        task.add_done_callback(lambda t: self._cycle_done(schedule.name, t))
        return task

    def _cycle_done(self, name: str, task: asyncio.Task[CycleResult]) -> None:
        if self._running.get(name) is task:
            del self._running[name]
        if task.cancelled():
            logger.info("Cycle for schedule %s was cancelled", name)
        elif task.exception() is not None:
            logger.error("Cycle for schedule %s failed: %s", name, task.exception())

    async def run_schedule(self, schedule: Schedule) -> CycleResult | None:
        """Run one cycle of ``schedule`` now.

        Returns:
            The cycle result, or None if a cycle for the schedule was
            already running.
        """
        task = self._start_cycle(schedule)
        if task is None:
            return None
        return await task

    async def run_all_once(self) -> list[CycleResult]:
        """Run one cycle of every registered schedule and wait for all of them."""
        results = await asyncio.gather(
            *(self.run_schedule(schedule) for schedule in self._schedules.values())
        )
        return [result for result in results if result is not None]

    async def _run_cycle(self, schedule: Schedule) -> CycleResult:
        async with self._run_gate:
            result = CycleResult(schedule=schedule.name)
            logger.info(
                "Starting cycle for schedule %s (%d feeds)",
                schedule.name,
                len(schedule.feeds),
            )
            batch_gate = asyncio.Semaphore(self._parallel_batches)

            async def run_batch(batch: tuple[Feed, ...]) -> None:
                async with batch_gate:
                    await asyncio.gather(*(self._refresh_feed(feed, result) for feed in batch))

            await asyncio.gather(
                *(run_batch(batch) for batch in batched(schedule.feeds, self._batch_size))
            )
            result.completed_at = datetime.now(timezone.utc)
            logger.info("%s", result.summary())
            return result

    async def _refresh_feed(self, feed: Feed, result: CycleResult) -> None:
        try:
            candidates = await self._refresher.refresh(feed)
        except Exception as exc:
            logger.error("Failed to refresh feed %s (%s): %s", feed.id, feed.url, exc)
            result.failed_feeds.append((feed.id, str(exc)))
            return
        result.feeds_refreshed += 1
        if not candidates:
            return
        logger.debug("Feed %s produced %d new articles", feed.id, len(candidates))
        for outcome in await self._pipeline.deliver_many(candidates):
            result.deliveries[outcome] += 1

    async def stop(self, drain: bool = True) -> None:
        """Disarm timers, let running cycles finish, then close the pipeline.

        Args:
            drain: Send articles still sitting in destination queues before
                returning. When False they are abandoned.
        """
        timers = list(self._timers.values())
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()

        running = list(self._running.values())
        if running:
            logger.info("Waiting for %d running cycles to finish", len(running))
            await asyncio.gather(*running, return_exceptions=True)

        await self._pipeline.close(drain=drain)
