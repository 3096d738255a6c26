"""feedrelay delivers new feed articles to chat channels and webhooks.

Scheduled refresh cycles discover new articles. Each article is filtered,
checked against global, per-destination and per-feed quotas, and either sent
directly or paced through a per-destination queue. Every outcome is recorded.
"""

__version__ = "0.1.0"
