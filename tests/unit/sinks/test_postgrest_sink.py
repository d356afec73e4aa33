"""
Unit tests for PostgrestSink using httpx.MockTransport (no network).
"""

import json

import httpx
import pytest

from telemetry_relay.errors import SinkErrorKind
from telemetry_relay.sinks import PostgrestSink

BASE = "https://store.example"


def make_sink(handler):
    client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return PostgrestSink(BASE, "secret", client=client)


@pytest.mark.asyncio
async def test_insert_posts_rows():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    sink = make_sink(handler)
    res = await sink.insert("telemetry_events", [{"event": "a"}, {"event": "b"}])

    assert res.ok
    assert seen["path"] == "/rest/v1/telemetry_events"
    assert seen["headers"]["apikey"] == "secret"
    assert seen["headers"]["authorization"] == "Bearer secret"
    assert seen["headers"]["prefer"] == "return=minimal"
    assert seen["body"] == [{"event": "a"}, {"event": "b"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,kind",
    [
        (429, SinkErrorKind.RATE_LIMITED),
        (503, SinkErrorKind.TRANSIENT),
        (408, SinkErrorKind.TRANSIENT),
        (400, SinkErrorKind.PERMANENT),
    ],
)
async def test_status_classification(status, kind):
    sink = make_sink(lambda request: httpx.Response(status, text="nope"))

    res = await sink.insert("telemetry_events", [{"event": "a"}])

    assert not res.ok
    assert res.error is kind
    assert str(status) in res.detail


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    res = await make_sink(handler).insert("telemetry_events", [{"event": "a"}])

    assert not res.ok
    assert res.error is SinkErrorKind.TRANSIENT


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    res = await make_sink(handler).insert("telemetry_events", [{"event": "a"}])

    assert res.error is SinkErrorKind.TRANSIENT
    assert "timeout" in res.detail
