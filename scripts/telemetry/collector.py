"""
Telemetry collector: the SDK facade used by the host application.

Records events into the durable event store, evaluates triggers, runs
upload cycles on the asyncio loop and applies remote session
configuration.
"""

import asyncio
import contextlib
import json
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from storage.config import config
from storage.kv_store import KeyValueStore

from .action_store import ActionStore
from .context import ClientInfo, Clock, format_event_timestamp, get_client_info, parse_event_timestamp, utc_now
from .engage import EngageClient, EngageResponse
from .engage_cache import EngageCache, fingerprint
from .errors import ConfigurationError, NotStartedError
from .event_store import EventStore
from .notifications import NotificationSink
from .schema import Engagement, Event, SessionConfig, decode_session_config
from .transport import RequestsTransport, Transport
from .triggers import EventAction, TriggerEvaluator
from .uploader import EventUploader, UploadResult

log = logging.getLogger(__name__)

KEY_USER_ID = "userID"
KEY_FIRST_SESSION = "firstSession"
KEY_LAST_SESSION = "lastSession"
KEY_CROSS_GAME_USER_ID = "crossGameUserID"

# Timing parameters differ on every request, so the config slot is keyed
# on decision point and flavour only.
CONFIG_CACHE_KEY = fingerprint("config", "internal")

ImagePrefetcher = Callable[[List[str]], Awaitable[None]]


class TelemetryCollector:
    """
    Client-side telemetry core.

    Handles the SDK lifecycle (start -> record/engage -> stop), durable
    buffering, background uploads and session configuration.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        notifications: Optional[NotificationSink] = None,
        client_info: Optional[ClientInfo] = None,
        clock: Clock = utc_now,
        image_prefetcher: Optional[ImagePrefetcher] = None,
        storage_root: Optional[Path] = None
    ):
        """
        Initialize collector and open the local stores.

        Args:
            transport: HTTP transport (defaults to RequestsTransport)
            notifications: Host notification sink
            client_info: Client metadata snapshot (defaults to host facts)
            clock: Event timestamp clock; may return None
            image_prefetcher: Coroutine fetching image cache URLs
            storage_root: Override for storage.root
        """
        self.transport = transport or RequestsTransport(timeout=config.get('upload.timeout_sec', 30))
        self.notifications = notifications or NotificationSink()
        self.client_info = client_info or get_client_info()
        self._clock = clock
        self.image_prefetcher = image_prefetcher

        root = Path(storage_root).expanduser() if storage_root else config.storage_path()

        event_store_path = root / "events" if config.is_enabled('event_store') else None
        self.event_store = EventStore(
            event_store_path,
            max_buffer_bytes=config.get('event_store.max_buffer_bytes', 1024 * 1024),
            batch_size=config.get('event_store.batch_size', 1)
        )

        cache_path = root / "engage" if config.get('engage.cache_enabled', True) else None
        self.engage_cache = EngageCache(
            cache_path,
            expiry_seconds=config.get('engage.cache_expiry_seconds', 0)
        )
        self.action_store = ActionStore(root / "actions")
        self.prefs = KeyValueStore(root / "prefs.json")

        self.evaluator = TriggerEvaluator(self.action_store)
        self.session_config = SessionConfig()
        self.uploader: Optional[EventUploader] = None

        self.started = False
        self.user_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self._push_notification_token: Optional[str] = None
        self._android_registration_id: Optional[str] = None
        self._previous_session: Optional[datetime] = None
        self._last_active: Optional[float] = None
        self._launch_notification: Optional[Event] = None
        self._background: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()

    # -- properties -------------------------------------------------------

    @property
    def has_started(self) -> bool:
        return self.started

    @property
    def is_uploading(self) -> bool:
        return self.uploader is not None and self.uploader.is_uploading

    @property
    def platform(self) -> str:
        return config.get('sdk.platform') or self.client_info.platform

    @property
    def sdk_version(self) -> str:
        return config.get('sdk.version')

    @property
    def cross_game_user_id(self) -> Optional[str]:
        return self.prefs.get_string(KEY_CROSS_GAME_USER_ID) or None

    @cross_game_user_id.setter
    def cross_game_user_id(self, value: Optional[str]):
        """
        Persist the cross-game user ID.

        Registered with its own event when started, otherwise sent with the
        next gameStarted event.
        """
        if not value:
            log.warning("CrossGameUserID cannot be null or empty")
            return
        if value == self.cross_game_user_id:
            return
        self.prefs.set_string(KEY_CROSS_GAME_USER_ID, value)
        if self.started:
            self.record(Event("ddnaRegisterCrossGameUserID").add_param("ddnaCrossGameUserID", value))

    @property
    def push_notification_token(self) -> Optional[str]:
        return self._push_notification_token

    @push_notification_token.setter
    def push_notification_token(self, value: Optional[str]):
        if not value or value == self._push_notification_token:
            return
        if self.started:
            self.record(Event("notificationServices").add_param("pushNotificationToken", value))
        self._push_notification_token = value

    @property
    def android_registration_id(self) -> Optional[str]:
        return self._android_registration_id

    @android_registration_id.setter
    def android_registration_id(self, value: Optional[str]):
        if not value or value == self._android_registration_id:
            return
        if self.started:
            self.record(Event("notificationServices").add_param("androidRegistrationID", value))
        self._android_registration_id = value

    # -- lifecycle --------------------------------------------------------

    def start(self, user_id: Optional[str] = None) -> bool:
        """
        Start the SDK.

        Args:
            user_id: Explicit user ID; defaults to the persisted one, or a
                new UUID on first run

        Returns:
            True if this is a new player

        Raises:
            ConfigurationError: collect URL or environment key missing
        """
        if self.started:
            log.debug("SDK already started")
            return False

        self.uploader = self._build_uploader()

        stored = self.prefs.get_string(KEY_USER_ID)
        if user_id is None:
            user_id = stored or str(uuid.uuid4())
        new_player = user_id != stored
        if new_player:
            self.prefs.set_string(KEY_USER_ID, user_id)
            self.engage_cache.clear()
            self.action_store.clear()
        self.user_id = user_id

        self.started = True
        self.new_session()

        if self._launch_notification is not None:
            self.record(self._launch_notification)
            self._launch_notification = None

        self._trigger_default_events(new_player)

        if config.get('upload.background', True):
            self._schedule_background_upload()

        return new_player

    async def stop(self) -> Optional[UploadResult]:
        """
        Record gameEnded, stop background uploads and upload once more.

        A background cycle already in flight is allowed to finish first.
        When the final upload only drained an older stalled batch, the
        queue holding gameEnded is uploaded as well.

        Returns:
            Result of the last upload cycle, or None if not started
        """
        if not self.started:
            log.debug("SDK not running")
            return None

        log.info("Stopping SDK")
        self.record("gameEnded")

        if self._background is not None:
            self._background.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._background
            self._background = None

        if self._cycle is not None:
            await self._cycle
            self._cycle = None

        result = await self.upload()
        if result in (UploadResult.SUCCESS, UploadResult.REJECTED) and self.event_store.active_count:
            result = await self.upload()
        if result is UploadResult.FAILED:
            log.warning("Final event upload failed, events kept for the next start")

        self.flush()
        self.started = False
        return result

    async def forget_me(self):
        """Stop the SDK if it is running."""
        if self.started:
            await self.stop()

    def new_session(self):
        """Begin a new session ID and roll the session timestamps."""
        self.session_id = str(uuid.uuid4())
        now = self._clock()
        self._previous_session = parse_event_timestamp(self.prefs.get_string(KEY_LAST_SESSION))
        if now is not None:
            stamp = format_event_timestamp(now)
            if not self.prefs.has_key(KEY_FIRST_SESSION):
                self.prefs.set_string(KEY_FIRST_SESSION, stamp)
            self.prefs.set_string(KEY_LAST_SESSION, stamp)
        log.debug("New session %s", self.session_id)

    def pause(self):
        """Host moved to background: persist buffered state."""
        self._last_active = time.monotonic()
        self.flush()

    def resume(self):
        """Host returned: start a new session after a long background."""
        if self._last_active is None:
            return
        background_seconds = time.monotonic() - self._last_active
        self._last_active = None
        if background_seconds > config.get('session.timeout_sec', 300):
            self.new_session()

    def flush(self):
        """Force buffered events and the engage cache to disk."""
        self.event_store.flush()
        self.engage_cache.save()

    def clear_persistent_data(self):
        """Wipe queued events, cached engagements and stored actions."""
        self.event_store.clear_all()
        self.engage_cache.clear()
        self.action_store.clear()

    # -- events -----------------------------------------------------------

    def record(
        self,
        event: Union[Event, str],
        params: Optional[Dict[str, Any]] = None
    ) -> EventAction:
        """
        Record an event and evaluate triggers for it.

        Args:
            event: Event, or an event name
            params: Parameters when event is a name

        Returns:
            EventAction carrying the winning trigger, if any

        Raises:
            NotStartedError: start() has not been called
        """
        if not self.started:
            raise NotStartedError()

        if isinstance(event, Event):
            event = Event(event.name, dict(event.params))
        else:
            event = Event(event, dict(params or {}))

        snapshot = self.session_config
        if not snapshot.allows_event(event.name):
            log.debug("Event %s is not whitelisted, ignoring", event.name)
            return EventAction.empty(event)

        event.add_param("platform", self.platform)
        event.add_param("sdkVersion", self.sdk_version)

        envelope = event.as_dict()
        envelope["userID"] = self.user_id
        envelope["sessionID"] = self.session_id
        envelope["eventUUID"] = str(uuid.uuid4())
        now = self._clock()
        if now is not None:
            envelope["eventTimestamp"] = format_event_timestamp(now)

        try:
            serialized = json.dumps(envelope, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            log.warning("Unable to generate JSON for '%s' event. %s", event.name, e)
        else:
            if not self.event_store.append(serialized):
                log.debug("Event store rejected '%s' event.", event.name)

        return self.evaluator.evaluate(event)

    def record_push_notification(self, payload: Dict[str, Any]):
        """
        Record a notificationOpened event from a push payload.

        Recorded immediately when started, otherwise on the next start().
        """
        log.debug("Received push notification: %s", payload)
        event = Event("notificationOpened")
        try:
            if "_ddId" in payload:
                event.add_param("notificationId", int(payload["_ddId"]))
            if "_ddName" in payload:
                event.add_param("notificationName", payload["_ddName"])

            communication = False
            if "_ddCampaign" in payload:
                event.add_param("campaignId", int(payload["_ddCampaign"]))
                communication = True
            if "_ddCohort" in payload:
                event.add_param("cohortId", int(payload["_ddCohort"]))
                communication = True
            if communication and "_ddCommunicationSender" in payload:
                event.add_param("communicationSender", payload["_ddCommunicationSender"])
            if "_ddLaunch" in payload:
                event.add_param("notificationLaunch", str(payload["_ddLaunch"]).lower() in ("true", "1"))
            event.add_param("communicationState", "OPEN")
        except (TypeError, ValueError) as e:
            log.error("Error parsing push notification payload. %s", e)

        if self.started:
            self.record(event)
        else:
            self._launch_notification = event

    def _trigger_default_events(self, new_player: bool):
        info = self.client_info

        if new_player and config.get('default_events.new_player', True):
            log.debug("Sending 'newPlayer' event")
            event = Event("newPlayer")
            if info.country_code:
                event.add_param("userCountry", info.country_code)
            self.record(event)

        if config.get('default_events.game_started', True):
            log.debug("Sending 'gameStarted' event")
            event = Event("gameStarted")
            event.add_param("clientVersion", config.get('sdk.client_version'))
            event.add_param("userLocale", info.locale)
            if self.cross_game_user_id:
                event.add_param("ddnaCrossGameUserID", self.cross_game_user_id)
            if self.push_notification_token:
                event.add_param("pushNotificationToken", self.push_notification_token)
            if self.android_registration_id:
                event.add_param("androidRegistrationID", self.android_registration_id)
            self.record(event)

        if config.get('default_events.client_device', True):
            log.debug("Sending 'clientDevice' event")
            event = Event("clientDevice", {
                "deviceName": info.device_name,
                "deviceType": info.device_type,
                "hardwareVersion": info.device_model,
                "operatingSystem": info.operating_system,
                "operatingSystemVersion": info.operating_system_version,
                "timezoneOffset": info.timezone_offset,
                "userLanguage": info.language_code,
            })
            if info.manufacturer:
                event.add_param("manufacturer", info.manufacturer)
            self.record(event)

    # -- uploads ----------------------------------------------------------

    def _build_uploader(self) -> EventUploader:
        collect_url = config.get('collect.url')
        environment_key = config.get('collect.environment_key')
        if not collect_url or not environment_key:
            raise ConfigurationError("Collect URL and environment key must be configured.")
        return EventUploader(
            self.event_store,
            self.transport,
            collect_url,
            environment_key,
            hash_secret=config.get('collect.hash_secret'),
            max_attempts=config.get('upload.max_attempts', 3),
            retry_delay=config.get('upload.retry_delay_sec', 2.0),
        )

    async def upload(self) -> UploadResult:
        """
        Run one upload cycle; BUSY if one is already in flight.

        Raises:
            NotStartedError: start() has not been called
        """
        if not self.started:
            raise NotStartedError()
        return await self.uploader.upload()

    def _schedule_background_upload(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop, background uploads disabled")
            return
        if self._background is None or self._background.done():
            self._background = loop.create_task(self._background_upload())

    async def _background_upload(self):
        await asyncio.sleep(config.get('upload.start_delay_sec', 0))
        while self.started:
            # Shielded so cancelling the loop never interrupts a submission.
            self._cycle = asyncio.ensure_future(self.upload())
            await asyncio.shield(self._cycle)
            await asyncio.sleep(config.get('upload.repeat_rate_sec', 60))

    # -- engagements ------------------------------------------------------

    def _identity(self) -> Dict[str, Any]:
        info = self.client_info
        return {
            "userID": self.user_id,
            "sessionID": self.session_id,
            "sdkVersion": self.sdk_version,
            "platform": self.platform,
            "manufacturer": info.manufacturer,
            "operatingSystemVersion": info.operating_system_version,
            "timezoneOffset": info.timezone_offset,
            "locale": info.locale,
        }

    def _engage_client(self) -> EngageClient:
        engage_url = config.get('engage.url')
        if not engage_url:
            raise ConfigurationError("Engage URL not configured.")
        return EngageClient(
            self.transport,
            engage_url,
            config.get('collect.environment_key', ''),
            cache=self.engage_cache if config.get('engage.cache_enabled', True) else None,
            hash_secret=config.get('collect.hash_secret'),
        )

    async def request_engagement(self, engagement: Engagement) -> EngageResponse:
        """
        Request a remote decision for a decision point.

        Non-whitelisted decision points resolve to an empty response
        without touching the network.

        Raises:
            NotStartedError: start() has not been called
            ConfigurationError: engage URL missing
        """
        if not self.started:
            raise NotStartedError()

        if not self.session_config.allows_decision_point(engagement.decision_point_and_flavour):
            log.debug("Decision point %s is not whitelisted", engagement.decision_point_and_flavour)
            return EngageResponse({}, "{}", 200)

        return await self._engage_client().request(engagement, self._identity())

    async def request_session_configuration(self) -> bool:
        """
        Fetch and apply the session configuration.

        Returns:
            True if a new configuration snapshot was applied
        """
        if not self.started:
            raise NotStartedError()

        log.debug("Requesting session configuration")
        now = self._clock() or utc_now()
        first = parse_event_timestamp(self.prefs.get_string(KEY_FIRST_SESSION))
        last = self._previous_session

        engagement = Engagement("config", "internal")
        engagement.add_param("timeSinceFirstSession", self._millis_since(first, now))
        engagement.add_param("timeSinceLastSession", self._millis_since(last, now))

        response = await self._engage_client().request(
            engagement, self._identity(), cache_key=CONFIG_CACHE_KEY
        )
        return self.apply_session_configuration(response.json)

    @staticmethod
    def _millis_since(moment: Optional[datetime], now: datetime) -> float:
        if moment is None:
            return 0
        return (now - moment).total_seconds() * 1000

    def apply_session_configuration(self, response: Dict[str, Any]) -> bool:
        """
        Replace the session configuration snapshot from a response.

        Returns:
            False (and notifies failure) when the response is unusable
        """
        previous = self.session_config
        snapshot = decode_session_config(response, previous)
        if snapshot is None:
            self.notifications.session_configuration_failed()
            return False

        if snapshot.triggers is not previous.triggers:
            for group in snapshot.triggers.values():
                for trigger in group:
                    if trigger.is_persistent:
                        self.action_store.put(trigger.id, trigger.parameters)
            self.evaluator.load(snapshot.triggers)

        self.session_config = snapshot

        if snapshot.image_cache is not previous.image_cache:
            self._spawn(self.download_image_assets())

        self.notifications.session_configured(snapshot.is_cached)
        return True

    async def download_image_assets(self):
        """Hand the configured image URLs to the prefetcher."""
        if self.image_prefetcher is None:
            log.debug("No image prefetcher configured, skipping image cache")
            return
        log.debug("Downloading image assets")
        try:
            await self.image_prefetcher(list(self.session_config.image_cache))
        except Exception as e:
            self.notifications.image_caching_failed(str(e))
        else:
            self.notifications.image_cache_populated()

    def _spawn(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.debug("No running event loop, skipping image download")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


_collector: Optional[TelemetryCollector] = None


def get_collector() -> TelemetryCollector:
    """
    Get the shared telemetry collector, creating it from config.

    Returns:
        TelemetryCollector instance
    """
    global _collector
    if _collector is None:
        _collector = TelemetryCollector()
    return _collector
