"""Core article delivery pipeline.

Each article moves through these states:

    Pending -> MediumResolved -> FilterEvaluated -> Blocked | RateAdmitted
    RateAdmitted -> Queued | Dispatched -> Delivered | Failed

A failure of one article never propagates to the caller. Outcomes are written
through the recorder on a best-effort basis.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Iterable

from feedrelay.config import RelayConfig

from .destinations import DestinationResolver
from .errors import DispatchError, MissingDestinationError, RateLimitedError
from .models import (
    CandidateArticle,
    DeliveryOutcome,
    DeliveryStatus,
    Destination,
    RenderedMessage,
)
from .queue import DestinationQueue
from .rate_limiter import RateLimiter
from .recorder import DeliveryRecorder
from .rendering import MAX_MESSAGE_LENGTH, ArticleRenderer, MessageRenderer
from .sink import OutboundSink

logger = logging.getLogger(__name__)

BLOCKED_COMMENT = "Blocked by filters"


class DeliveryResult(str, Enum):
    """What :meth:`DeliveryPipeline.deliver` did with an article."""

    DROPPED = "dropped"  # destination missing
    BLOCKED = "blocked"
    RATE_LIMITED = "rate_limited"
    QUEUED = "queued"
    DELIVERED = "delivered"
    FAILED = "failed"


class DeliveryPipeline:
    """Moves candidate articles to their destinations.

    In direct mode (``apis.httpGateway.enabled``) payloads go straight to the
    sink. Otherwise they are parked in a per-destination
    :class:`DestinationQueue`, created on first use and kept for the life of
    the pipeline.

    Args:
        config: Relay configuration.
        sink: Outbound request sink.
        rate_limiter: Quota admission.
        recorder: Delivery outcome recorder.
        resolver: Destination resolver.
        renderer: Message renderer. Defaults to :class:`ArticleRenderer`.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        sink: OutboundSink,
        rate_limiter: RateLimiter,
        recorder: DeliveryRecorder,
        resolver: DestinationResolver,
        renderer: MessageRenderer | None = None,
    ) -> None:
        self._sink = sink
        self._rate_limiter = rate_limiter
        self._recorder = recorder
        self._resolver = resolver
        self._renderer = renderer or ArticleRenderer()
        self._log_filtered = config.log.unfiltered
        self._log_rate_limits = config.log.rate_limit_hits
        self._direct = config.http_gateway.enabled
        self._base_url = config.http_gateway.base_url
        self._dequeue_rate = config.feeds.article_dequeue_rate
        self._queues: dict[str, DestinationQueue] = {}

    @property
    def direct_mode(self) -> bool:
        return self._direct

    @property
    def queues(self) -> dict[str, DestinationQueue]:
        """Destination queues by destination id. A copy; read-only."""
        return dict(self._queues)

    def get_queue_for_channel(self, destination_id: str) -> DestinationQueue:
        """Return the queue for a destination, creating it on first use."""
        queue = self._queues.get(destination_id)
        if queue is None:
            queue = DestinationQueue(
                destination_id,
                self._sink,
                base_url=self._base_url,
                dequeue_rate=self._dequeue_rate,
                on_delivered=self._handle_queue_delivered,
                on_failed=self._handle_queue_failed,
            )
            self._queues[destination_id] = queue
        return queue

    async def deliver(self, candidate: CandidateArticle) -> DeliveryResult:
        """Run one article through the pipeline. Never raises."""
        article = candidate.article
        feed = candidate.feed

        try:
            destination = await self._resolver.resolve(candidate)
        except MissingDestinationError:
            destination = None
        except Exception as exc:
            await self.handle_failure(candidate, exc)
            return DeliveryResult.FAILED
        if destination is None:
            logger.debug(
                "Dropping article %s of feed %s: destination %s no longer exists",
                article.id,
                feed.id,
                candidate.destination.id,
            )
            return DeliveryResult.DROPPED

        try:
            message = self._renderer.render(candidate)
            if not message.passed_filters:
                await self._handle_blocked(candidate)
                return DeliveryResult.BLOCKED

            await self._rate_limiter.assert_within_limits(message)
            logger.debug("Preparing to send article %s of feed %s", article.id, feed.id)

            if not self._direct:
                self.get_queue_for_channel(destination.id).enqueue(candidate, message, destination)
                logger.debug("Enqueued article %s of feed %s", article.id, feed.id)
                return DeliveryResult.QUEUED

            await self._send_direct(candidate, destination, message)
            logger.debug("Sent article %s of feed %s", article.id, feed.id)
        except RateLimitedError as exc:
            level = logging.INFO if self._log_rate_limits else logging.DEBUG
            logger.log(level, "Ignoring rate-limited article %s: %s", article.id, exc)
            return DeliveryResult.RATE_LIMITED
        except MissingDestinationError:
            logger.debug(
                "Destination %s disappeared before article %s was sent",
                destination.id,
                article.id,
            )
            return DeliveryResult.DROPPED
        except Exception as exc:
            await self.handle_failure(candidate, exc)
            return DeliveryResult.FAILED

        await self._record(DeliveryOutcome.for_candidate(candidate, DeliveryStatus.DELIVERED))
        return DeliveryResult.DELIVERED

    async def deliver_many(self, candidates: Iterable[CandidateArticle]) -> list[DeliveryResult]:
        """Deliver a batch of articles concurrently."""
        return list(await asyncio.gather(*(self.deliver(c) for c in candidates)))

    async def _send_direct(
        self,
        candidate: CandidateArticle,
        destination: Destination,
        message: RenderedMessage,
    ) -> None:
        outbound = [
            destination.build_request(self._base_url, payload, candidate.correlation)
            for payload in message.payloads
        ]
        results = await asyncio.gather(
            *(self._sink.dispatch(request) for request in outbound),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _handle_blocked(self, candidate: CandidateArticle) -> None:
        article = candidate.article
        if self._log_filtered:
            logger.info(
                "'%s' did not pass filters and was not sent",
                article.link or article.title,
            )
        await self._record(
            DeliveryOutcome.for_candidate(candidate, DeliveryStatus.BLOCKED, BLOCKED_COMMENT)
        )

    async def handle_failure(self, candidate: CandidateArticle, error: Exception) -> None:
        """Record a failed delivery and notify the destination when useful."""
        article = candidate.article
        feed = candidate.feed
        await self._record(
            DeliveryOutcome.for_candidate(candidate, DeliveryStatus.FAILED, str(error) or "N/A")
        )

        if isinstance(error, DispatchError) and error.is_rate_limited:
            logger.debug("Ignoring upstream rate-limited article %s: %s", article.id, error)
            return

        logger.warning(
            "Failed to deliver article %s (%s) of feed %s to destination %s: %s",
            article.id,
            article.link,
            feed.id,
            candidate.destination.id,
            error,
        )
        if isinstance(error, DispatchError) and error.is_malformed_payload:
            await self._notify_malformed(candidate, error)

    async def _notify_malformed(self, candidate: CandidateArticle, error: DispatchError) -> None:
        # Sent straight to the sink: no quota, no queue, no retry
        text = f"Failed to send article <{candidate.article.link}>.```{error}```"
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "```"
        request = candidate.destination.build_request(
            self._base_url, {"content": text}, candidate.correlation
        )
        try:
            await self._sink.dispatch(request)
        except Exception as exc:
            logger.warning(
                "Failed to notify destination %s about article %s: %s",
                candidate.destination.id,
                candidate.article.id,
                exc,
            )

    async def _handle_queue_delivered(self, candidate: CandidateArticle) -> None:
        await self._record(DeliveryOutcome.for_candidate(candidate, DeliveryStatus.DELIVERED))

    async def _handle_queue_failed(self, candidate: CandidateArticle, error: Exception) -> None:
        if isinstance(error, MissingDestinationError):
            logger.debug(
                "Destination %s disappeared before queued article %s was sent",
                candidate.destination.id,
                candidate.article.id,
            )
            return
        await self.handle_failure(candidate, error)

    async def _record(self, outcome: DeliveryOutcome) -> None:
        logger.debug("Recording %s delivery record for article %s", outcome.status.value, outcome.article_id)
        try:
            await self._recorder.record(outcome)
        except Exception as exc:
            logger.error(
                "Failed to record article %s delivery %s in destination %s: %s",
                outcome.article_id,
                outcome.status.value,
                outcome.destination_id,
                exc,
            )

    async def close(self, drain: bool = True) -> None:
        """Close every destination queue, sending what is left when ``drain``."""
        await asyncio.gather(*(queue.close(drain=drain) for queue in self._queues.values()))
