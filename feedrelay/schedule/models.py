"""Schedules and cycle results."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from feedrelay.config import ConfigError
from feedrelay.delivery.models import Feed
from feedrelay.delivery.pipeline import DeliveryResult


@dataclass(frozen=True)
class Schedule:
    """A named group of feeds refreshed on a common interval.

    Attributes:
        name: Unique schedule name.
        refresh_rate_minutes: Minutes between cycle starts.
        feeds: Feeds refreshed by every cycle.
    """

    name: str
    refresh_rate_minutes: float
    feeds: tuple[Feed, ...] = ()

    @property
    def interval_seconds(self) -> float:
        return self.refresh_rate_minutes * 60

    @property
    def feed_ids(self) -> list[str]:
        return [feed.id for feed in self.feeds]


@dataclass
class CycleResult:
    """Result of one refresh cycle of a schedule.

    Attributes:
        schedule: Schedule name.
        started_at: When the cycle acquired its run slot.
        completed_at: When the cycle finished.
        feeds_refreshed: Feeds refreshed without error.
        failed_feeds: ``(feed id, error)`` for feeds whose refresh failed.
        deliveries: Count of pipeline results by kind.
    """

    schedule: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    feeds_refreshed: int = 0
    failed_feeds: list[tuple[str, str]] = field(default_factory=list)
    deliveries: Counter[DeliveryResult] = field(default_factory=Counter)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def articles_total(self) -> int:
        return sum(self.deliveries.values())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging/reporting."""
        return {
            "schedule": self.schedule,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "feeds_refreshed": self.feeds_refreshed,
            "failed_feeds": [{"feed": feed_id, "error": error} for feed_id, error in self.failed_feeds],
            "articles_total": self.articles_total,
            "deliveries": {result.value: self.deliveries.get(result, 0) for result in DeliveryResult},
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Schedule {self.schedule} completed in {self.duration_seconds:.1f}s",
            f"  Feeds refreshed: {self.feeds_refreshed}",
            f"  Feeds failed: {len(self.failed_feeds)}",
            f"  Articles: {self.articles_total}",
        ]
        for result in DeliveryResult:
            count = self.deliveries.get(result, 0)
            if count:
                lines.append(f"    - {result.value}: {count}")
        return "\n".join(lines)


def parse_schedules(data: Mapping[str, Any], default_refresh_minutes: float) -> list[Schedule]:
    """Build schedules from the schedules file structure.

    Raises:
        ConfigError: If the structure is invalid.
    """
    raw_schedules = data.get("schedules") if isinstance(data, Mapping) else None
    if not isinstance(raw_schedules, list):
        raise ConfigError('Schedules file must contain a "schedules" list')

    schedules: list[Schedule] = []
    seen_feeds: set[str] = set()
    for index, raw in enumerate(raw_schedules):
        if not isinstance(raw, Mapping) or not raw.get("name"):
            raise ConfigError(f"Schedule #{index} must be an object with a name")
        refresh = raw.get("refreshRateMinutes", default_refresh_minutes)
        if isinstance(refresh, bool) or not isinstance(refresh, (int, float)) or refresh <= 0:
            raise ConfigError(f'Schedule {raw["name"]}: "refreshRateMinutes" must be greater than 0')
        feeds: list[Feed] = []
        for raw_feed in raw.get("feeds", []):
            try:
                feed = Feed.from_dict(raw_feed)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise ConfigError(f'Schedule {raw["name"]}: invalid feed {raw_feed!r}: {exc}') from exc
            if feed.id in seen_feeds:
                raise ConfigError(f"Feed {feed.id} is assigned to more than one schedule")
            seen_feeds.add(feed.id)
            feeds.append(feed)
        schedules.append(
            Schedule(
                name=str(raw["name"]),
                refresh_rate_minutes=float(refresh),
                feeds=tuple(feeds),
            )
        )
    return schedules


def load_schedules(path: Path, default_refresh_minutes: float) -> list[Schedule]:
    """Read schedules from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read schedules file {path}: {exc}") from exc
    return parse_schedules(data, default_refresh_minutes)
