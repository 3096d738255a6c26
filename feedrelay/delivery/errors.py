"""Delivery error taxonomy.

Only :class:`DeliveryError` subclasses are raised inside the pipeline. None
of them escape :meth:`DeliveryPipeline.deliver`.
"""

from __future__ import annotations

# API error code for "Invalid Form Body", e.g. a malformed embed
INVALID_FORM_BODY = 50035

# API error codes for a channel or webhook that no longer exists
UNKNOWN_CHANNEL = 10003
UNKNOWN_WEBHOOK = 10015


class DeliveryError(Exception):
    """Base class for delivery failures."""


class MissingDestinationError(DeliveryError):
    """The destination vanished before the article could be sent."""


class RateLimitedError(DeliveryError):
    """A quota scope is exhausted. Expected and frequent, not a failure.

    Attributes:
        scope: Quota scope name ("global", "destination" or "feed").
        key: Scope key, e.g. the destination id.
    """

    def __init__(self, scope: str, key: str, limit: int) -> None:
        super().__init__(f"Article rate limited by {scope} quota {key} (limit {limit})")
        self.scope = scope
        self.key = key
        self.limit = limit


class DispatchError(DeliveryError):
    """The outbound sink rejected or failed a request.

    Attributes:
        status: HTTP status code, if a response was received.
        code: API error code from the response body, if any.
        retry_after: Seconds the upstream asked us to wait, if given.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_malformed_payload(self) -> bool:
        return self.code == INVALID_FORM_BODY


class PersistenceError(DeliveryError):
    """Recording a delivery outcome failed."""


class FeedRefreshError(Exception):
    """A feed could not be fetched or parsed."""

    def __init__(self, feed_id: str, message: str) -> None:
        super().__init__(f"Failed to refresh feed {feed_id}: {message}")
        self.feed_id = feed_id
