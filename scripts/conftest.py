"""Shared fixtures for the package tests."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from storage.config import config
from telemetry.transport import Transport, TransportResponse


class FakeTransport(Transport):
    """
    Scripted transport.

    Replies are consumed in order; the last one repeats once the script
    runs out. Every call is recorded.
    """

    def __init__(self, *replies: TransportResponse):
        self.replies = list(replies) or [TransportResponse(200, "{}")]
        self.calls = []
        self.gate = None

    async def submit(self, url, method="POST", body=None, headers=None):
        self.calls.append({"url": url, "method": method, "body": body, "headers": headers})
        if self.gate is not None:
            await self.gate.wait()
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


async def no_sleep(_delay):
    return None


@pytest.fixture
def sdk_config(tmp_path):
    """Point config at a temp directory and restore it afterwards."""
    saved = config.get_all()
    config.set('storage.root', str(tmp_path / "sdk"))
    config.set('collect.url', "collect.example.com")
    config.set('collect.environment_key', "env-key")
    config.set('collect.hash_secret', None)
    config.set('engage.url', "engage.example.com")
    config.set('upload.background', False)
    config.set('upload.retry_delay_sec', 0)
    config.set('event_store.batch_size', 1)
    yield config
    config._config = saved
