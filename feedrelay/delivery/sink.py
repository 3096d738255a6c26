"""Outbound request sink.

The pipeline only depends on :class:`OutboundSink`. :class:`HttpSink` is the
shipped implementation: it posts JSON with requests from a worker thread and
maps API error responses onto the delivery error taxonomy.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Protocol

import requests

from .errors import (
    UNKNOWN_CHANNEL,
    UNKNOWN_WEBHOOK,
    DispatchError,
    MissingDestinationError,
)
from .models import OutboundRequest

logger = logging.getLogger(__name__)


class OutboundSink(Protocol):
    async def dispatch(self, request: OutboundRequest) -> None:
        """Send one request.

        Raises:
            MissingDestinationError: The destination no longer exists.
            DispatchError: Any other failure.
        """


class HttpSink:
    """Sends outbound requests over HTTP.

    Upstream rate limits (HTTP 429) are retried with exponential backoff,
    honouring ``Retry-After`` when present, up to ``max_retries`` times.
    Other errors are not retried.
    """

    DEFAULT_BACKOFF_MULTIPLIER = 2.0

    def __init__(
        self,
        token: str = "",
        *,
        session: requests.Session | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._session = session or requests.Session()

    async def dispatch(self, request: OutboundRequest) -> None:
        await asyncio.to_thread(self._send_with_retry, request)

    def _headers(self, request: OutboundRequest) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        # Webhook routes carry their own token in the URL
        if self.token and "/webhooks/" not in request.url:
            headers["Authorization"] = f"Bot {self.token}"
        headers.update(request.headers)
        return headers

    def _send_with_retry(self, request: OutboundRequest) -> None:
        backoff = self.initial_backoff
        for attempt in range(self.max_retries + 1):
            try:
                response = self._session.request(
                    request.method,
                    request.url,
                    data=request.body,
                    headers=self._headers(request),
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise DispatchError(f"Request failed: {exc}") from exc

            if response.ok:
                return

            error = _error_from_response(response)
            if isinstance(error, DispatchError) and error.is_rate_limited and attempt < self.max_retries:
                wait_time = min(error.retry_after or backoff, self.max_backoff)
                logger.debug(
                    "Rate limited sending article %s (attempt %d/%d). Waiting %.1f seconds.",
                    request.correlation.article_id,
                    attempt + 1,
                    self.max_retries + 1,
                    wait_time,
                )
                time.sleep(wait_time)
                backoff = min(backoff * self.DEFAULT_BACKOFF_MULTIPLIER, self.max_backoff)
                continue
            raise error

        raise DispatchError("Request failed unexpectedly")


def _error_from_response(response: requests.Response) -> Exception:
    """Translate an error response into a delivery error."""
    data: dict[str, Any] = {}
    try:
        parsed = response.json()
        if isinstance(parsed, dict):
            data = parsed
    except (ValueError, json.JSONDecodeError):
        pass

    code = data.get("code")
    message = data.get("message") or response.reason or f"HTTP {response.status_code}"

    if response.status_code == 404 and code in (UNKNOWN_CHANNEL, UNKNOWN_WEBHOOK):
        return MissingDestinationError(message)

    retry_after = _parse_retry_after(response, data)
    if data.get("errors"):
        message = f"{message}\n{json.dumps(data['errors'], indent=2)}"
    if response.status_code == 429:
        message = f"Rate limited: {message}"
    return DispatchError(
        message,
        status=response.status_code,
        code=code if isinstance(code, int) else None,
        retry_after=retry_after,
    )


def _parse_retry_after(response: requests.Response, data: dict[str, Any]) -> float | None:
    value = response.headers.get("Retry-After") or data.get("retry_after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
