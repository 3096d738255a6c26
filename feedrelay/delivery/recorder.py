"""Delivery outcome persistence.

Outcomes are appended to a JSON Lines file, one record per line. When no
records path is configured, :class:`NullDeliveryRecorder` is used and every
call is a no-op.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Protocol

from feedrelay.config import DatabaseSettings

from .errors import PersistenceError
from .models import DeliveryOutcome

logger = logging.getLogger(__name__)


class DeliveryRecorder(Protocol):
    async def record(self, outcome: DeliveryOutcome) -> None:
        """Persist one outcome. Raises :class:`PersistenceError` on failure."""


class NullDeliveryRecorder:
    """Recorder used when persistence is disabled."""

    async def record(self, outcome: DeliveryOutcome) -> None:
        return None

    def prune(self, days: int) -> int:
        return 0


class JsonlDeliveryRecorder:
    """Appends outcomes to a JSON Lines file.

    Attributes:
        path: File the records are written to. Parent directories are
            created on first write.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    async def record(self, outcome: DeliveryOutcome) -> None:
        await asyncio.to_thread(self._append, outcome.to_dict())

    def _append(self, data: dict[str, Any]) -> None:
        line = json.dumps(data, sort_keys=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            raise PersistenceError(f"Failed to write delivery record to {self.path}: {exc}") from exc

    def read(self) -> Iterator[dict[str, Any]]:
        """Yield stored records, oldest first. Corrupt lines are skipped."""
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt delivery record in %s", self.path)

    def prune(self, days: int, now: datetime | None = None) -> int:
        """Drop records older than ``days`` days.

        Returns:
            Number of records removed.
        """
        if not self.path.exists():
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        with self._lock:
            kept: list[dict[str, Any]] = []
            removed = 0
            for record in self.read():
                try:
                    # Naive timestamps cannot be compared with the aware cutoff
                    expired = datetime.fromisoformat(record["recordedAt"]) < cutoff
                except (KeyError, TypeError, ValueError):
                    kept.append(record)
                    continue
                if expired:
                    removed += 1
                else:
                    kept.append(record)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                for record in kept:
                    f.write(json.dumps(record, sort_keys=True) + "\n")
            tmp_path.replace(self.path)
        logger.info("Pruned %d delivery records older than %d days", removed, days)
        return removed


def create_recorder(settings: DatabaseSettings) -> JsonlDeliveryRecorder | NullDeliveryRecorder:
    """Recorder for the configured records path, or a no-op recorder."""
    if not settings.records_path:
        return NullDeliveryRecorder()
    return JsonlDeliveryRecorder(Path(settings.records_path))
