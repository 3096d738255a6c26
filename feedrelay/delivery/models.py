"""Data types shared by the delivery pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class DestinationKind(str, Enum):
    CHANNEL = "channel"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class Correlation:
    """Identifiers attached to outbound requests for log correlation only."""

    article_id: str
    feed_url: str
    destination_id: str


@dataclass(frozen=True)
class OutboundRequest:
    """One HTTP request handed to an :class:`~feedrelay.delivery.sink.OutboundSink`."""

    method: str
    url: str
    body: str
    correlation: Correlation
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Destination:
    """A channel or webhook that receives rendered messages.

    Attributes:
        kind: Whether this is a channel or a webhook.
        id: Channel or webhook id.
        token: Webhook token. Unused for channels.
    """

    kind: DestinationKind
    id: str
    token: str | None = None

    @classmethod
    def channel(cls, channel_id: str) -> "Destination":
        return cls(kind=DestinationKind.CHANNEL, id=channel_id)

    @classmethod
    def webhook(cls, webhook_id: str, token: str) -> "Destination":
        return cls(kind=DestinationKind.WEBHOOK, id=webhook_id, token=token)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Destination":
        kind = DestinationKind(data.get("type", "channel"))
        if kind is DestinationKind.WEBHOOK:
            if not data.get("token"):
                raise ValueError(f"Webhook destination {data.get('id')} requires a token")
            return cls.webhook(str(data["id"]), str(data["token"]))
        return cls.channel(str(data["id"]))

    @property
    def is_webhook(self) -> bool:
        return self.kind is DestinationKind.WEBHOOK

    def route(self) -> str:
        """API route that accepts messages for this destination."""
        if self.is_webhook:
            return f"/webhooks/{self.id}/{self.token}"
        return f"/channels/{self.id}/messages"

    def build_request(
        self,
        base_url: str,
        payload: Mapping[str, Any],
        correlation: Correlation,
        headers: Mapping[str, str] | None = None,
    ) -> OutboundRequest:
        """Build the POST request that sends ``payload`` to this destination."""
        return OutboundRequest(
            method="POST",
            url=f"{base_url}{self.route()}",
            body=json.dumps(payload),
            correlation=correlation,
            headers=dict(headers or {}),
        )


@dataclass(frozen=True)
class WebhookProfile:
    """Name and avatar override used when sending through a webhook."""

    name: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class Feed:
    """A subscribed feed and where its articles go.

    Attributes:
        id: Unique feed id.
        url: Feed URL.
        destination: Target destination for new articles.
        filters: Keyword filters keyed by article field. A key prefixed with
            ``!`` holds blocking keywords for that field.
        text: Message template. ``{title}``, ``{link}``, ``{description}``
            and ``{published}`` are substituted.
        webhook: Webhook profile override.
    """

    id: str
    url: str
    destination: Destination
    filters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    text: str | None = None
    webhook: WebhookProfile | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Feed":
        filters = {
            str(key): tuple(str(word) for word in words)
            for key, words in (data.get("filters") or {}).items()
        }
        webhook = data.get("webhook")
        return cls(
            id=str(data["id"]),
            url=str(data["url"]),
            destination=Destination.from_dict(data["destination"]),
            filters=filters,
            text=data.get("text"),
            webhook=WebhookProfile(
                name=webhook.get("name"),
                avatar_url=webhook.get("avatar"),
            ) if webhook else None,
        )


@dataclass(frozen=True)
class Article:
    id: str
    title: str = ""
    link: str = ""
    description: str = ""
    published: str = ""


@dataclass(frozen=True)
class CandidateArticle:
    """A newly discovered article on its way to a destination.

    Consumed exactly once by :meth:`DeliveryPipeline.deliver`.
    """

    article: Article
    feed: Feed

    @property
    def destination(self) -> Destination:
        return self.feed.destination

    @property
    def correlation(self) -> Correlation:
        return Correlation(
            article_id=self.article.id,
            feed_url=self.feed.url,
            destination_id=self.destination.id,
        )


@dataclass(frozen=True)
class RenderedMessage:
    """An article after filter evaluation and payload construction.

    Attributes:
        passed_filters: Filter verdict.
        payloads: One or more JSON payloads. Long content is split.
        feed_id: Feed the article came from (per-feed quota scope).
        destination_id: Destination it was rendered for (daily quota scope).
    """

    passed_filters: bool
    payloads: tuple[dict[str, Any], ...]
    feed_id: str
    destination_id: str


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Terminal result of one article's delivery attempt. Written once."""

    status: DeliveryStatus
    article_id: str
    feed_url: str
    destination_id: str
    comment: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

    @classmethod
    def for_candidate(
        cls,
        candidate: CandidateArticle,
        status: DeliveryStatus,
        comment: str | None = None,
    ) -> "DeliveryOutcome":
        return cls(
            status=status,
            article_id=candidate.article.id,
            feed_url=candidate.feed.url,
            destination_id=candidate.destination.id,
            comment=comment,
        )

    def to_dict(self) -> dict[str, Any]:
        """Record shape written by delivery recorders."""
        return {
            "articleID": self.article_id,
            "feedURL": self.feed_url,
            "destinationID": self.destination_id,
            "delivered": self.delivered,
            "status": self.status.value,
            "comment": self.comment or "",
            "recordedAt": self.recorded_at.isoformat(),
        }
