"""RSS/Atom feed refresh.

Fetches feeds with requests, parses them with feedparser, and returns the
entries that have not been seen before as candidate articles.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging

import feedparser
import requests

from feedrelay.config import BotSettings, FeedSettings
from feedrelay.delivery.errors import FeedRefreshError
from feedrelay.delivery.models import Article, CandidateArticle, Feed

logger = logging.getLogger(__name__)


def article_id(entry: feedparser.FeedParserDict) -> str:
    """Stable id for a feed entry: its guid, else link, else a title hash."""
    for key in ("id", "link"):
        value = entry.get(key)
        if value:
            return str(value)
    title = entry.get("title", "")
    return hashlib.sha256(title.encode("utf-8")).hexdigest()[:16]


def entry_to_article(entry: feedparser.FeedParserDict) -> Article:
    return Article(
        id=article_id(entry),
        title=entry.get("title", ""),
        link=entry.get("link", ""),
        description=entry.get("summary", "") or entry.get("description", ""),
        published=entry.get("published", "") or entry.get("updated", ""),
    )


class RssFeedRefresher:
    """Tracks seen entries per feed and reports new ones.

    On the first refresh of a feed every current entry is marked as seen.
    When ``feeds.sendFirstCycle`` is enabled the newest entry is also
    returned, so a new subscription shows one article right away.

    Args:
        bot: Request settings (User-Agent and timeout).
        feeds: Feed settings.
        session: Optional requests session, mostly for tests.
    """

    def __init__(
        self,
        bot: BotSettings,
        feeds: FeedSettings,
        session: requests.Session | None = None,
    ) -> None:
        self._user_agent = bot.user_agent
        self._timeout = bot.feed_request_timeout_ms / 1000
        self._send_first_cycle = feeds.send_first_cycle
        self._session = session or requests.Session()
        self._seen: dict[str, set[str]] = {}

    async def refresh(self, feed: Feed) -> list[CandidateArticle]:
        content = await asyncio.to_thread(self._fetch, feed)
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise FeedRefreshError(feed.id, f"unparseable feed: {parsed.get('bozo_exception')}")

        articles = [entry_to_article(entry) for entry in parsed.entries]
        seen = self._seen.get(feed.id)
        if seen is None:
            self._seen[feed.id] = {article.id for article in articles}
            if self._send_first_cycle and articles:
                return [CandidateArticle(article=articles[0], feed=feed)]
            return []

        new_articles = []
        for article in articles:
            if article.id in seen:
                continue
            seen.add(article.id)
            new_articles.append(article)
        # Feeds list newest first; deliver oldest first
        new_articles.reverse()
        return [CandidateArticle(article=article, feed=feed) for article in new_articles]

    def _fetch(self, feed: Feed) -> bytes:
        try:
            response = self._session.get(
                feed.url,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as exc:
            raise FeedRefreshError(feed.id, f"timed out after {self._timeout:g}s") from exc
        except requests.RequestException as exc:
            raise FeedRefreshError(feed.id, str(exc)) from exc
        return response.content
