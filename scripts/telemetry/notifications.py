"""
One-way notifications to the host application.

Subclass NotificationSink, or pass callbacks, to observe session and
image cache outcomes. Every method is fire-and-forget; a failing host
callback is logged and never disturbs the pipeline.
"""

import logging
from typing import Callable, Optional

log = logging.getLogger(__name__)


class NotificationSink:
    """Receives session configuration and image cache outcomes."""

    def __init__(
        self,
        on_session_configured: Optional[Callable[[bool], None]] = None,
        on_session_configuration_failed: Optional[Callable[[], None]] = None,
        on_image_cache_populated: Optional[Callable[[], None]] = None,
        on_image_caching_failed: Optional[Callable[[str], None]] = None
    ):
        self._callbacks = {
            "session_configured": on_session_configured,
            "session_configuration_failed": on_session_configuration_failed,
            "image_cache_populated": on_image_cache_populated,
            "image_caching_failed": on_image_caching_failed,
        }

    def _emit(self, name: str, *args):
        callback = self._callbacks.get(name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.exception("Notification handler %s raised", name)

    def session_configured(self, is_cached: bool):
        log.debug("Session configured (cached=%s)", is_cached)
        self._emit("session_configured", is_cached)

    def session_configuration_failed(self):
        log.warning("Session configuration failed")
        self._emit("session_configuration_failed")

    def image_cache_populated(self):
        log.debug("Image cache populated")
        self._emit("image_cache_populated")

    def image_caching_failed(self, error: str):
        log.debug("Image caching failed due to %s", error)
        self._emit("image_caching_failed", error)
