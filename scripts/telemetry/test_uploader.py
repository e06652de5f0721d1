#!/usr/bin/env python3
"""
Tests for the upload pipeline.

Run with: python3 -m pytest scripts/telemetry/test_uploader.py -v
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeTransport, no_sleep
from telemetry.event_store import EventStore
from telemetry.transport import TransportResponse, generate_hash
from telemetry.uploader import (
    EventUploader,
    UploadResult,
    UploadState,
    build_envelope,
    classify_status,
)


def _uploader(store, transport, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("sleep", no_sleep)
    return EventUploader(store, transport, "collect.example.com", "env-key", **kwargs)


def _fill(store, *names):
    for name in names:
        assert store.append(json.dumps({"eventName": name}))


@pytest.mark.parametrize("status,expected", [
    (200, UploadResult.SUCCESS),
    (204, UploadResult.SUCCESS),
    (302, UploadResult.SUCCESS),
    (400, UploadResult.REJECTED),
    (0, UploadResult.FAILED),
    (401, UploadResult.FAILED),
    (500, UploadResult.FAILED),
    (503, UploadResult.FAILED),
])
def test_classify_status(status, expected):
    assert classify_status(status) is expected


def test_envelope_format():
    assert build_envelope(['{"a":1}', '{"b":2}']) == '{"eventList":[{"a":1},{"b":2}]}'
    assert json.loads(build_envelope([])) == {"eventList": []}


def test_success_clears_batch():
    store = EventStore()
    _fill(store, "a", "b")
    transport = FakeTransport(TransportResponse(200, ""))

    result = asyncio.run(_uploader(store, transport).upload())

    assert result is UploadResult.SUCCESS
    assert len(transport.calls) == 1
    posted = json.loads(transport.calls[0]["body"])
    assert [e["eventName"] for e in posted["eventList"]] == ["a", "b"]
    assert transport.calls[0]["url"] == "https://collect.example.com/env-key/bulk"
    assert transport.calls[0]["headers"] == {"Content-Type": "application/json"}

    store.swap()
    assert store.read() == []


def test_rejection_clears_in_one_attempt():
    """400 discards the batch regardless of max_attempts."""
    store = EventStore()
    _fill(store, "a", "b", "c")
    transport = FakeTransport(TransportResponse(400, "bad"))

    result = asyncio.run(_uploader(store, transport, max_attempts=5).upload())

    assert result is UploadResult.REJECTED
    assert len(transport.calls) == 1
    store.swap()
    assert store.read() == []


def test_retry_bound_keeps_batch():
    """N retryable failures -> N submissions and the batch is kept."""
    store = EventStore()
    _fill(store, "a", "b")
    store.swap()
    before = store.read()

    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    transport = FakeTransport(TransportResponse(503, None, "unavailable"))
    uploader = _uploader(store, transport, max_attempts=4, retry_delay=1.5, sleep=record_sleep)

    result = asyncio.run(uploader.upload())

    assert result is UploadResult.FAILED
    assert len(transport.calls) == 4
    assert delays == [1.5, 1.5, 1.5]
    assert store.read() == before
    assert uploader.state is UploadState.IDLE

    # Same batch again on the next cycle
    assert asyncio.run(uploader.upload()) is UploadResult.FAILED
    assert all(c["body"] == transport.calls[0]["body"] for c in transport.calls)


def test_retry_then_success():
    store = EventStore()
    _fill(store, "a")
    transport = FakeTransport(
        TransportResponse(0, None, "timeout"),
        TransportResponse(500, "oops"),
        TransportResponse(200, ""),
    )

    result = asyncio.run(_uploader(store, transport).upload())

    assert result is UploadResult.SUCCESS
    assert len(transport.calls) == 3
    assert store.read() == []


def test_empty_queue_skips_post():
    transport = FakeTransport()
    result = asyncio.run(_uploader(EventStore(), transport).upload())

    assert result is UploadResult.EMPTY
    assert transport.calls == []


def test_single_flight():
    """A second cycle while one is posting reports BUSY and never posts."""
    store = EventStore()
    _fill(store, "a")
    transport = FakeTransport(TransportResponse(200, ""))
    uploader = _uploader(store, transport)

    async def scenario():
        transport.gate = asyncio.Event()
        first = asyncio.ensure_future(uploader.upload())
        await asyncio.sleep(0)
        assert uploader.is_uploading
        assert uploader.state is UploadState.POSTING

        second = await uploader.upload()
        transport.gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is UploadResult.SUCCESS
    assert second is UploadResult.BUSY
    assert len(transport.calls) == 1
    assert not uploader.is_uploading


def test_events_appended_during_upload_wait_for_next_cycle():
    store = EventStore()
    _fill(store, "a")
    transport = FakeTransport(TransportResponse(200, ""))
    uploader = _uploader(store, transport)

    async def scenario():
        transport.gate = asyncio.Event()
        cycle = asyncio.ensure_future(uploader.upload())
        await asyncio.sleep(0)
        _fill(store, "late")
        transport.gate.set()
        await cycle
        transport.gate = None
        await uploader.upload()

    asyncio.run(scenario())

    first = json.loads(transport.calls[0]["body"])["eventList"]
    second = json.loads(transport.calls[1]["body"])["eventList"]
    assert [e["eventName"] for e in first] == ["a"]
    assert [e["eventName"] for e in second] == ["late"]


def test_signed_upload_url():
    store = EventStore()
    _fill(store, "a")
    transport = FakeTransport(TransportResponse(200, ""))

    asyncio.run(_uploader(store, transport, hash_secret="s3cret").upload())

    call = transport.calls[0]
    expected = generate_hash(call["body"], "s3cret")
    assert call["url"] == f"https://collect.example.com/env-key/bulk/hash/{expected}"


def test_raising_transport_is_retryable():
    class Exploding(FakeTransport):
        async def submit(self, *args, **kwargs):
            self.calls.append(args)
            raise ConnectionError("reset")

    store = EventStore()
    _fill(store, "a")
    transport = Exploding()

    result = asyncio.run(_uploader(store, transport, max_attempts=2).upload())

    assert result is UploadResult.FAILED
    assert len(transport.calls) == 2
    assert len(store.read()) == 1
