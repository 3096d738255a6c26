"""Schedules and the timers that drive refresh cycles."""

from .manager import FeedRefresher, ScheduleManager
from .models import CycleResult, Schedule, load_schedules, parse_schedules
from .runner import build_manager, run_forever, run_once

__all__ = [
    "CycleResult",
    "FeedRefresher",
    "Schedule",
    "ScheduleManager",
    "build_manager",
    "load_schedules",
    "parse_schedules",
    "run_forever",
    "run_once",
]
