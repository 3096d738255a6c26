"""Per-destination article queues.

A :class:`DestinationQueue` decouples bursty article arrival from the
outbound rate limit. Entries are released in insertion order at a fixed
drain rate. The queue paces; it does not retry. Results are reported
through the callbacks supplied at construction.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

from .models import CandidateArticle, Destination, RenderedMessage
from .sink import OutboundSink

logger = logging.getLogger(__name__)

DeliveredCallback = Callable[[CandidateArticle], Awaitable[None]]
FailedCallback = Callable[[CandidateArticle, Exception], Awaitable[None]]


@dataclass(frozen=True)
class QueueEntry:
    candidate: CandidateArticle
    message: RenderedMessage
    destination: Destination


class DestinationQueue:
    """FIFO of rendered articles for one destination, drained on a timer.

    The drain timer only runs while entries are pending. It is started by
    :meth:`enqueue` and stops by itself once the queue is empty.

    Args:
        destination_id: Destination this queue serves.
        sink: Where drained entries are sent.
        base_url: API base URL used to build request URLs.
        dequeue_rate: Entries released per second.
        on_delivered: Awaited after every payload of an entry was sent.
        on_failed: Awaited with the error when sending an entry failed.
    """

    def __init__(
        self,
        destination_id: str,
        sink: OutboundSink,
        *,
        base_url: str,
        dequeue_rate: float,
        on_delivered: DeliveredCallback,
        on_failed: FailedCallback,
    ) -> None:
        if dequeue_rate <= 0:
            raise ValueError("dequeue_rate must be greater than 0")
        self.destination_id = destination_id
        self._sink = sink
        self._base_url = base_url
        self._interval = 1.0 / dequeue_rate
        self._on_delivered = on_delivered
        self._on_failed = on_failed
        self._entries: deque[QueueEntry] = deque()
        self._drain_lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def interval(self) -> float:
        """Seconds between drains."""
        return self._interval

    @property
    def is_draining(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def enqueue(
        self,
        candidate: CandidateArticle,
        message: RenderedMessage,
        destination: Destination | None = None,
    ) -> None:
        """Append an entry and make sure the drain timer is running.

        ``destination`` defaults to the candidate's own destination.
        """
        if self._closed:
            raise RuntimeError(f"Queue for destination {self.destination_id} is closed")
        self._entries.append(QueueEntry(candidate, message, destination or candidate.destination))
        if not self.is_draining:
            self._timer = asyncio.get_running_loop().create_task(
                self._drain_periodically(),
                name=f"drain-{self.destination_id}",
            )

    async def _drain_periodically(self) -> None:
        while self._entries:
            await asyncio.sleep(self._interval)
            try:
                await self.drain()
            except Exception as exc:
                # The entry is already popped; keep going with the rest
                logger.error(
                    "Delivery callback for destination %s failed: %s",
                    self.destination_id,
                    exc,
                )

    async def drain(self) -> bool | None:
        """Pop the oldest entry and send it.

        Returns:
            True if it was delivered, False if sending failed, None if the
            queue was empty.
        """
        async with self._drain_lock:
            if not self._entries:
                return None
            entry = self._entries.popleft()
            candidate = entry.candidate
            try:
                for payload in entry.message.payloads:
                    request = entry.destination.build_request(
                        self._base_url, payload, candidate.correlation
                    )
                    await self._sink.dispatch(request)
            except Exception as exc:
                logger.debug(
                    "Queued article %s for destination %s failed: %s",
                    candidate.article.id,
                    self.destination_id,
                    exc,
                )
                await self._on_failed(candidate, exc)
                return False
            logger.debug(
                "Drained article %s to destination %s (%d pending)",
                candidate.article.id,
                self.destination_id,
                len(self._entries),
            )
            await self._on_delivered(candidate)
            return True

    async def close(self, drain: bool = True) -> None:
        """Stop accepting entries and stop the timer.

        Args:
            drain: Send the remaining entries, at the configured pace,
                before returning. When False they are abandoned.
        """
        self._closed = True
        if not drain and self._entries:
            logger.info(
                "Abandoning %d queued articles for destination %s",
                len(self._entries),
                self.destination_id,
            )
            self._entries.clear()

        timer = self._timer
        if timer is not None and not timer.done():
            if drain and (self._entries or self._drain_lock.locked()):
                # Only the running timer drains, so the pace stays at the dequeue rate
                await asyncio.wait({timer})
            else:
                timer.cancel()
                try:
                    await timer
                except asyncio.CancelledError:
                    pass
        self._timer = None

        if drain and self._entries:
            await self._drain_periodically()
