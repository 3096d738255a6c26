"""Message rendering and filter evaluation.

The default renderer produces plain-text message payloads from a feed's
template. Article descriptions are usually HTML, so they are flattened to
text with BeautifulSoup before substitution.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from bs4 import BeautifulSoup

from .models import Article, CandidateArticle, Feed, RenderedMessage

DEFAULT_TEXT = ":newspaper:  |  **{title}**\n\n{link}"

# Maximum characters in a single message payload
MAX_MESSAGE_LENGTH = 2000

_FILTER_FIELDS = ("title", "description", "link")


class MessageRenderer(Protocol):
    def render(self, candidate: CandidateArticle) -> RenderedMessage:
        """Evaluate filters and build the destination payload(s)."""


def html_to_text(html: str) -> str:
    """Flatten an HTML fragment to whitespace-normalized text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def passes_filters(article: Article, filters: Mapping[str, tuple[str, ...]]) -> bool:
    """Evaluate keyword filters against an article.

    A key prefixed with ``!`` (e.g. ``!title``) lists blocking keywords: any
    match rejects the article. Plain keys list required keywords: when any
    are configured, at least one must match. Matching is a case-insensitive
    substring test. An article with no filters always passes.
    """
    fields = {
        "title": article.title,
        "description": html_to_text(article.description),
        "link": article.link,
    }
    has_required = False
    matched_required = False
    for key, words in filters.items():
        blocking = key.startswith("!")
        name = key[1:] if blocking else key
        if name not in _FILTER_FIELDS:
            continue
        value = fields[name].lower()
        matched = any(word.lower() in value for word in words if word)
        if blocking and matched:
            return False
        if not blocking and words:
            has_required = True
            matched_required = matched_required or matched
    return matched_required or not has_required


def split_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` characters.

    Splits on the last newline, then the last space, inside the limit. Text
    without either is cut hard.
    """
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks


def _format_text(feed: Feed, article: Article) -> str:
    values = {
        "title": article.title,
        "link": article.link,
        "description": html_to_text(article.description),
        "published": article.published,
    }
    text = feed.text or DEFAULT_TEXT
    for key, value in values.items():
        text = text.replace("{" + key + "}", value)
    return text.strip()


class ArticleRenderer:
    """Default :class:`MessageRenderer`."""

    def __init__(self, max_length: int = MAX_MESSAGE_LENGTH) -> None:
        self.max_length = max_length

    def render(self, candidate: CandidateArticle) -> RenderedMessage:
        feed = candidate.feed
        article = candidate.article
        passed = passes_filters(article, feed.filters)
        payloads: list[dict[str, Any]] = []
        if passed:
            for chunk in split_text(_format_text(feed, article), self.max_length):
                payload: dict[str, Any] = {"content": chunk}
                if candidate.destination.is_webhook and feed.webhook:
                    if feed.webhook.name:
                        payload["username"] = feed.webhook.name
                    if feed.webhook.avatar_url:
                        payload["avatar_url"] = feed.webhook.avatar_url
                payloads.append(payload)
        return RenderedMessage(
            passed_filters=passed,
            payloads=tuple(payloads),
            feed_id=feed.id,
            destination_id=candidate.destination.id,
        )
