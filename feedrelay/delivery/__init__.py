"""Article delivery: quotas, destination queues and the delivery pipeline.

Usage:
    from feedrelay.delivery import DeliveryPipeline, RateLimiter

    pipeline = DeliveryPipeline(
        config,
        sink=HttpSink(config.bot.token),
        rate_limiter=RateLimiter(config.feeds),
        recorder=create_recorder(config.database),
        resolver=StaticDestinationResolver(destinations),
    )
    result = await pipeline.deliver(candidate)
"""

from .destinations import DestinationResolver, StaticDestinationResolver
from .errors import (
    DeliveryError,
    DispatchError,
    MissingDestinationError,
    PersistenceError,
    RateLimitedError,
)
from .models import (
    Article,
    CandidateArticle,
    DeliveryOutcome,
    DeliveryStatus,
    Destination,
    DestinationKind,
    Feed,
    OutboundRequest,
    RenderedMessage,
)
from .pipeline import DeliveryPipeline, DeliveryResult
from .queue import DestinationQueue
from .rate_limiter import RateLimiter
from .recorder import JsonlDeliveryRecorder, NullDeliveryRecorder, create_recorder
from .rendering import ArticleRenderer
from .sink import HttpSink, OutboundSink

__all__ = [
    # Models
    "Article",
    "CandidateArticle",
    "DeliveryOutcome",
    "DeliveryStatus",
    "Destination",
    "DestinationKind",
    "Feed",
    "OutboundRequest",
    "RenderedMessage",
    # Errors
    "DeliveryError",
    "DispatchError",
    "MissingDestinationError",
    "PersistenceError",
    "RateLimitedError",
    # Components
    "ArticleRenderer",
    "DeliveryPipeline",
    "DeliveryResult",
    "DestinationQueue",
    "DestinationResolver",
    "HttpSink",
    "JsonlDeliveryRecorder",
    "NullDeliveryRecorder",
    "OutboundSink",
    "RateLimiter",
    "StaticDestinationResolver",
    "create_recorder",
]
