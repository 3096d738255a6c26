"""Tests for feedrelay/schedule/models.py."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from feedrelay.config import ConfigError
from feedrelay.delivery.pipeline import DeliveryResult
from feedrelay.schedule.models import CycleResult, Schedule, load_schedules, parse_schedules


def _feed(feed_id: str) -> dict:
    return {"id": feed_id, "url": f"https://example.com/{feed_id}", "destination": {"id": "c1"}}


class TestParseSchedules:
    """Tests for parse_schedules."""

    def test_parses_schedules(self) -> None:
        schedules = parse_schedules(
            {
                "schedules": [
                    {"name": "fast", "refreshRateMinutes": 2, "feeds": [_feed("a"), _feed("b")]},
                    {"name": "default", "feeds": [_feed("c")]},
                ]
            },
            default_refresh_minutes=10,
        )

        assert [s.name for s in schedules] == ["fast", "default"]
        assert schedules[0].interval_seconds == 120
        assert schedules[0].feed_ids == ["a", "b"]
        assert schedules[1].refresh_rate_minutes == 10

    def test_requires_schedules_list(self) -> None:
        with pytest.raises(ConfigError, match='"schedules" list'):
            parse_schedules({}, 10)

    def test_requires_name(self) -> None:
        with pytest.raises(ConfigError, match="must be an object with a name"):
            parse_schedules({"schedules": [{"feeds": []}]}, 10)

    def test_rejects_bad_refresh_rate(self) -> None:
        with pytest.raises(ConfigError, match="refreshRateMinutes"):
            parse_schedules({"schedules": [{"name": "s", "refreshRateMinutes": 0}]}, 10)

    def test_rejects_invalid_feed(self) -> None:
        with pytest.raises(ConfigError, match="invalid feed"):
            parse_schedules({"schedules": [{"name": "s", "feeds": [{"id": "x"}]}]}, 10)

    def test_feed_in_one_schedule_only(self) -> None:
        """A feed belongs to at most one schedule."""
        with pytest.raises(ConfigError, match="more than one schedule"):
            parse_schedules(
                {
                    "schedules": [
                        {"name": "a", "feeds": [_feed("x")]},
                        {"name": "b", "feeds": [_feed("x")]},
                    ]
                },
                10,
            )

    def test_load_schedules(self, tmp_path: Path) -> None:
        path = tmp_path / "schedules.json"
        path.write_text(json.dumps({"schedules": [{"name": "s", "feeds": [_feed("a")]}]}), encoding="utf-8")

        assert load_schedules(path, 5)[0].feed_ids == ["a"]

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read schedules file"):
            load_schedules(tmp_path / "missing.json", 5)


class TestCycleResult:
    """Tests for CycleResult reporting."""

    def test_summary_and_dict(self) -> None:
        started = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = CycleResult(
            schedule="s",
            started_at=started,
            completed_at=started + timedelta(seconds=3),
            feeds_refreshed=2,
            failed_feeds=[("bad", "timeout")],
            deliveries=Counter({DeliveryResult.DELIVERED: 3, DeliveryResult.BLOCKED: 1}),
        )

        assert result.duration_seconds == 3
        assert result.articles_total == 4
        data = result.to_dict()
        assert data["deliveries"]["delivered"] == 3
        assert data["deliveries"]["failed"] == 0
        assert data["failed_feeds"] == [{"feed": "bad", "error": "timeout"}]
        summary = result.summary()
        assert "Schedule s completed in 3.0s" in summary
        assert "- blocked: 1" in summary
        assert "- failed" not in summary

    def test_incomplete_cycle_duration(self) -> None:
        assert CycleResult(schedule="s").duration_seconds == 0.0

    def test_schedule_defaults(self) -> None:
        assert Schedule(name="s", refresh_rate_minutes=1).feeds == ()
