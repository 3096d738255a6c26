"""Shared fakes for delivery and schedule tests."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import pytest

from feedrelay.config import (
    AdvancedSettings,
    BotSettings,
    FeedSettings,
    HttpGatewaySettings,
    LogSettings,
    RelayConfig,
)
from feedrelay.delivery.models import (
    Article,
    CandidateArticle,
    DeliveryOutcome,
    Destination,
    Feed,
    OutboundRequest,
)


class FakeSink:
    """Records dispatched requests. ``fail_with`` maps article ids to errors."""

    def __init__(self, delay: float = 0.0) -> None:
        self.requests: list[OutboundRequest] = []
        self.fail_with: dict[str, Exception] = {}
        self.delay = delay

    async def dispatch(self, request: OutboundRequest) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        body = json.loads(request.body)
        error = self.fail_with.get(request.correlation.article_id)
        if error is not None and not body.get("content", "").startswith("Failed to send article"):
            raise error
        self.requests.append(request)

    @property
    def contents(self) -> list[str]:
        return [json.loads(request.body)["content"] for request in self.requests]


class MemoryRecorder:
    def __init__(self, error: Exception | None = None) -> None:
        self.outcomes: list[DeliveryOutcome] = []
        self.error = error

    async def record(self, outcome: DeliveryOutcome) -> None:
        if self.error is not None:
            raise self.error
        self.outcomes.append(outcome)


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def memory_recorder() -> MemoryRecorder:
    return MemoryRecorder()


@pytest.fixture
def make_config() -> Callable[..., RelayConfig]:
    """Build a RelayConfig with selected feed/advanced/log overrides."""

    def _make(
        *,
        direct: bool = False,
        feeds: dict | None = None,
        advanced: dict | None = None,
        log: dict | None = None,
        run_on_start: bool = False,
    ) -> RelayConfig:
        return RelayConfig(
            log=LogSettings(**(log or {})),
            bot=BotSettings(run_schedules_on_start=run_on_start),
            feeds=FeedSettings(**{"article_dequeue_rate": 1000, **(feeds or {})}),
            advanced=AdvancedSettings(**(advanced or {})),
            http_gateway=HttpGatewaySettings(enabled=direct, base_url="https://api.test"),
        )

    return _make


@pytest.fixture
def make_candidate() -> Callable[..., CandidateArticle]:
    """Build a CandidateArticle for a channel destination."""

    def _make(
        article_id: str = "a1",
        *,
        feed_id: str = "feed-1",
        destination: Destination | None = None,
        title: str = "Title",
        description: str = "",
        filters: dict | None = None,
    ) -> CandidateArticle:
        feed = Feed(
            id=feed_id,
            url=f"https://example.com/{feed_id}.xml",
            destination=destination or Destination.channel("chan-1"),
            filters={key: tuple(words) for key, words in (filters or {}).items()},
        )
        article = Article(
            id=article_id,
            title=title,
            link=f"https://example.com/{article_id}",
            description=description,
        )
        return CandidateArticle(article=article, feed=feed)

    return _make
