"""Tests for the HttpSink outbound transport."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from feedrelay.delivery.errors import (
    INVALID_FORM_BODY,
    UNKNOWN_CHANNEL,
    UNKNOWN_WEBHOOK,
    DispatchError,
    MissingDestinationError,
)
from feedrelay.delivery.models import Correlation, Destination
from feedrelay.delivery.sink import HttpSink


def _request(destination: Destination | None = None):
    destination = destination or Destination.channel("chan-1")
    return destination.build_request(
        "https://api.test",
        {"content": "hello"},
        Correlation(article_id="a1", feed_url="https://example.com/feed.xml", destination_id=destination.id),
    )


def _response(status: int, payload: dict | None = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = "Reason"
    response.headers = headers or {}
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


def _sink(*responses, token: str = "bot-token", **kwargs) -> tuple[HttpSink, MagicMock]:
    session = MagicMock()
    session.request.side_effect = list(responses)
    return HttpSink(token, session=session, **kwargs), session


def test_dispatch_posts_json_with_bot_authorization():
    """Channel requests carry the bot token and JSON body."""
    sink, session = _sink(_response(200, {}))

    asyncio.run(sink.dispatch(_request()))

    session.request.assert_called_once()
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.test/channels/chan-1/messages")
    assert json.loads(kwargs["data"]) == {"content": "hello"}
    assert kwargs["headers"]["Authorization"] == "Bot bot-token"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["timeout"] == 15.0


def test_webhook_requests_skip_authorization():
    """Webhook URLs carry their own token, so no Authorization header is sent."""
    sink, session = _sink(_response(204))

    asyncio.run(sink.dispatch(_request(Destination.webhook("wh-1", "secret"))))

    _, kwargs = session.request.call_args
    assert "Authorization" not in kwargs["headers"]
    assert session.request.call_args[0][1] == "https://api.test/webhooks/wh-1/secret"


def test_invalid_form_body_maps_to_dispatch_error():
    """Code 50035 surfaces as a malformed-payload DispatchError."""
    payload = {
        "code": INVALID_FORM_BODY,
        "message": "Invalid Form Body",
        "errors": {"embeds": {"0": {"_errors": [{"code": "BASE_TYPE_REQUIRED"}]}}},
    }
    sink, _ = _sink(_response(400, payload))

    with pytest.raises(DispatchError) as excinfo:
        asyncio.run(sink.dispatch(_request()))

    error = excinfo.value
    assert error.status == 400
    assert error.is_malformed_payload
    assert not error.is_rate_limited
    assert str(error).startswith("Invalid Form Body")
    assert "BASE_TYPE_REQUIRED" in str(error)


@pytest.mark.parametrize("code", [UNKNOWN_CHANNEL, UNKNOWN_WEBHOOK])
def test_unknown_destination_maps_to_missing_destination(code):
    """A 404 for an unknown channel or webhook means the destination is gone."""
    sink, _ = _sink(_response(404, {"code": code, "message": "Unknown Channel"}))

    with pytest.raises(MissingDestinationError):
        asyncio.run(sink.dispatch(_request()))


def test_plain_404_is_a_dispatch_error():
    """A 404 without a known code is an ordinary failure."""
    sink, _ = _sink(_response(404))

    with pytest.raises(DispatchError) as excinfo:
        asyncio.run(sink.dispatch(_request()))

    assert excinfo.value.status == 404
    assert str(excinfo.value) == "Reason"


def test_rate_limit_retry_then_success():
    """A 429 is retried using the Retry-After header."""
    sink, session = _sink(
        _response(429, {"message": "You are being rate limited."}, {"Retry-After": "1.5"}),
        _response(200, {}),
    )

    with patch("time.sleep") as mock_sleep:
        asyncio.run(sink.dispatch(_request()))

    assert session.request.call_count == 2
    mock_sleep.assert_called_once_with(1.5)


def test_rate_limit_exhausts_retries():
    """After max_retries the 429 is raised as a rate-limited DispatchError."""
    limited = {"message": "You are being rate limited."}
    sink, session = _sink(
        _response(429, limited),
        _response(429, limited),
        _response(429, limited),
        max_retries=2,
        initial_backoff=1.0,
    )

    with patch("time.sleep") as mock_sleep:
        with pytest.raises(DispatchError) as excinfo:
            asyncio.run(sink.dispatch(_request()))

    assert session.request.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]
    assert excinfo.value.is_rate_limited
    assert str(excinfo.value).startswith("Rate limited:")


def test_retry_after_capped_by_max_backoff():
    """Retry-After values above max_backoff are capped."""
    sink, _ = _sink(
        _response(429, {"retry_after": 120}),
        _response(200, {}),
        max_backoff=10.0,
    )

    with patch("time.sleep") as mock_sleep:
        asyncio.run(sink.dispatch(_request()))

    mock_sleep.assert_called_once_with(10.0)


def test_server_errors_are_not_retried():
    """Non-429 errors fail on the first attempt."""
    sink, session = _sink(_response(500, {"message": "Internal Server Error"}))

    with pytest.raises(DispatchError, match="Internal Server Error"):
        asyncio.run(sink.dispatch(_request()))

    assert session.request.call_count == 1


def test_connection_errors_become_dispatch_errors():
    """Transport failures are wrapped in DispatchError."""
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("connection refused")
    sink = HttpSink("t", session=session)

    with pytest.raises(DispatchError, match="connection refused") as excinfo:
        asyncio.run(sink.dispatch(_request()))

    assert excinfo.value.status is None
