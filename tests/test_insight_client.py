"""Tests for the remote insight client (no network: httpx.MockTransport)."""
import asyncio
import json

import httpx
import pytest

from affectcoach.core.errors import ErrorKind, RemoteInsightFailure
from affectcoach.core.models import FeatureFrame
from affectcoach.services.insight_client import RemoteInsightClient, build_payload
from conftest import ManualClock

URL = "http://insight.test/analyze"
FRAME = FeatureFrame(energy=0.4, variance=0.02, speaking_ratio=0.5, pitch_hz=190.0, rms=0.06)


def make_client(handler, clock=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteInsightClient(url=URL, client=http, clock=clock or ManualClock())


def json_handler(payload, status=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status, json=payload)
    return handler


def test_payload_shape():
    assert build_payload(FRAME, 2.5) == {
        "rms": 0.06,
        "variance": 0.02,
        "speakingRatio": 0.5,
        "pitch": 190.0,
        "fillersPerMinute": 2.5,
    }


def test_disabled_without_url():
    client = RemoteInsightClient(url="")
    assert not client.enabled
    assert client.maybe_request(FRAME) is None


@pytest.mark.asyncio
async def test_successful_response_is_clamped_ai_record():
    seen = []
    client = make_client(json_handler({"summary": "Calm and clear", "stress": 1.4, "confidence": 0.65}, seen=seen))

    insight = await client.request(FRAME, 1.0)

    assert insight.source == "ai"
    assert insight.summary == "Calm and clear"
    assert insight.stress == 1.0
    assert insight.confidence == pytest.approx(0.65)
    assert seen[0]["fillersPerMinute"] == 1.0
    await client.close()


@pytest.mark.asyncio
async def test_non_numeric_fields_are_dropped():
    client = make_client(json_handler({"stress": "high", "confidence": True}))
    insight = await client.request(FRAME)

    assert insight.stress is None
    assert insight.confidence is None
    assert insight.summary is None
    await client.close()


@pytest.mark.asyncio
async def test_http_error_raises_remote_failure():
    client = make_client(json_handler({}, status=503))

    with pytest.raises(RemoteInsightFailure) as excinfo:
        await client.request(FRAME)

    assert excinfo.value.kind == ErrorKind.REMOTE_INSIGHT_FAILURE
    await client.close()


@pytest.mark.asyncio
async def test_network_error_raises_remote_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(RemoteInsightFailure):
        await client.request(FRAME)
    await client.close()


@pytest.mark.asyncio
async def test_rate_limited_to_one_call_per_interval():
    clock = ManualClock()
    client = make_client(json_handler({"stress": 0.5}), clock=clock)

    first = client.maybe_request(FRAME)
    assert first is not None
    await first
    assert client.maybe_request(FRAME) is None

    clock.advance(4.9)
    assert client.maybe_request(FRAME) is None

    clock.advance(0.2)
    second = client.maybe_request(FRAME)
    assert second is not None
    await second
    assert client.calls == 2
    await client.close()


@pytest.mark.asyncio
async def test_failure_reported_once_until_success():
    """Repeated failures are announced once; a success re-arms reporting."""
    clock = ManualClock()
    status = {"code": 500}

    def handler(request):
        return httpx.Response(status["code"], json={"stress": 0.3})

    client = make_client(handler, clock=clock)
    errors, insights = [], []
    client.bind(on_insight=insights.append, on_error=errors.append)

    for _ in range(3):
        await client.maybe_request(FRAME)
        clock.advance(5.1)
    assert len(errors) == 1
    assert client.failures == 3
    assert client.has_error

    status["code"] = 200
    await client.maybe_request(FRAME)
    clock.advance(5.1)
    assert len(insights) == 1
    assert not client.has_error

    status["code"] = 500
    await client.maybe_request(FRAME)
    assert len(errors) == 2
    await client.close()


@pytest.mark.asyncio
async def test_reset_allows_immediate_call():
    clock = ManualClock()
    client = make_client(json_handler({}), clock=clock)
    await client.maybe_request(FRAME)
    client.reset()
    task = client.maybe_request(FRAME)
    assert task is not None
    await task
    await client.close()


@pytest.mark.asyncio
async def test_close_cancels_every_in_flight_request():
    """Overlapping slow requests are all cancelled on close."""
    clock = ManualClock()
    never = asyncio.Event()

    async def slow_handler(request: httpx.Request) -> httpx.Response:
        await never.wait()
        return httpx.Response(200, json={})

    client = make_client(slow_handler, clock=clock)
    first = client.maybe_request(FRAME)
    clock.advance(10.0)
    second = client.maybe_request(FRAME)
    await asyncio.sleep(0)

    await client.close()
    assert first.cancelled()
    assert second.cancelled()
