"""
Upload pipeline for queued events.

One cycle: swap the event store, post the inactive buffer as a single
envelope, retry transient failures with a fixed delay, then clear or keep
the batch depending on the outcome. At most one cycle runs at a time.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .event_store import EventStore
from .transport import (
    COLLECT_HASH_URL_PATTERN,
    COLLECT_URL_PATTERN,
    JSON_HEADERS,
    Transport,
    TransportResponse,
    signed_url,
)

log = logging.getLogger(__name__)

STATUS_REJECTED = 400


class UploadState(Enum):
    IDLE = "idle"
    SWAPPING = "swapping"
    POSTING = "posting"
    RETRY_WAIT = "retry_wait"


class UploadResult(Enum):
    BUSY = "busy"
    EMPTY = "empty"
    SUCCESS = "success"
    REJECTED = "rejected"
    FAILED = "failed"


def build_envelope(events: List[str]) -> str:
    """Concatenate serialized events into the bulk upload envelope."""
    return '{"eventList":[' + ','.join(events) + ']}'


def classify_status(status_code: int) -> UploadResult:
    """Map a collect response status onto a cycle outcome."""
    if 0 < status_code < 400:
        return UploadResult.SUCCESS
    if status_code == STATUS_REJECTED:
        return UploadResult.REJECTED
    return UploadResult.FAILED


class EventUploader:
    """
    Drains the event store to the collect service.

    Handles:
    - Single-flight cycles (concurrent triggers get BUSY)
    - Signed or unsigned submission
    - Bounded retries with a fixed delay
    - Clearing on success or 400, keeping the batch otherwise
    """

    def __init__(
        self,
        store: EventStore,
        transport: Transport,
        collect_url: str,
        environment_key: str,
        hash_secret: Optional[str] = None,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize uploader.

        Args:
            store: Event store to drain
            transport: Transport collaborator
            collect_url: Collect service host
            environment_key: Environment key used in the URL path
            hash_secret: Shared secret for signed uploads (optional)
            max_attempts: Submissions per cycle before giving up
            retry_delay: Seconds between attempts
            sleep: Delay coroutine (replaceable in tests)
        """
        self.store = store
        self.transport = transport
        self.collect_url = collect_url
        self.environment_key = environment_key
        self.hash_secret = hash_secret
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep

        self.state = UploadState.IDLE
        self.attempts = 0

    @property
    def is_uploading(self) -> bool:
        return self.state is not UploadState.IDLE

    async def upload(self) -> UploadResult:
        """
        Run one upload cycle.

        Returns:
            UploadResult describing how the cycle ended
        """
        # Flag is set before the first await, so concurrent callers on the
        # same loop see it immediately.
        if self.is_uploading:
            log.warning("Event upload already in progress, try again later.")
            return UploadResult.BUSY

        self.state = UploadState.SWAPPING
        try:
            self.store.swap()
            events = self.store.read()
            if not events:
                return UploadResult.EMPTY

            log.debug("Starting event upload of %d events.", len(events))
            result = await self._post(build_envelope(events))

            if result is UploadResult.SUCCESS:
                log.debug("Event upload successful.")
                self.store.clear_inactive()
            elif result is UploadResult.REJECTED:
                log.debug("Collect rejected events, possible corruption.")
                self.store.clear_inactive()
            else:
                log.warning("Event upload failed - try again later.")
            return result
        finally:
            self.state = UploadState.IDLE

    async def _post(self, envelope: str) -> UploadResult:
        url = signed_url(
            COLLECT_URL_PATTERN,
            COLLECT_HASH_URL_PATTERN,
            self.collect_url,
            self.environment_key,
            envelope,
            self.hash_secret,
        )

        self.attempts = 0
        result = UploadResult.FAILED
        while self.attempts < self.max_attempts:
            if self.attempts > 0:
                self.state = UploadState.RETRY_WAIT
                await self._sleep(self.retry_delay)

            self.state = UploadState.POSTING
            self.attempts += 1
            response = await self._submit(url, envelope)
            result = classify_status(response.status_code)
            if result is not UploadResult.FAILED:
                break
            log.debug("Error posting events (attempt %d/%d): %s %s",
                      self.attempts, self.max_attempts, response.error, response.body)

        return result

    async def _submit(self, url: str, envelope: str) -> TransportResponse:
        try:
            return await self.transport.submit(url, "POST", envelope, dict(JSON_HEADERS))
        except Exception as e:
            # Transports must not raise; treat it as a network failure.
            return TransportResponse(status_code=0, error=str(e))
