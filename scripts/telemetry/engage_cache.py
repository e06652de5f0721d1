"""
Engagement response cache.

Keeps the last successful response per request fingerprint in memory and
persists the whole map to one JSON file at checkpoints.
"""

import hashlib
import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from storage.jsonl_utils import read_json, write_json_atomic

log = logging.getLogger(__name__)

CACHE_FILE = "engage_cache.json"


def fingerprint(decision_point: str, flavour: str, parameters: Optional[Mapping[str, Any]] = None) -> str:
    """
    Key for a cacheable engagement request.

    Built from the request content, so equal parameter mappings share a
    slot regardless of key order.
    """
    canonical = json.dumps(
        {
            "decisionPoint": decision_point,
            "flavour": flavour,
            "parameters": parameters or {},
        },
        sort_keys=True,
        separators=(',', ':'),
        default=str,
    )
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class EngageCache:
    """In-memory engagement cache with write-back persistence."""

    def __init__(
        self,
        path: Optional[Path] = None,
        expiry_seconds: float = 0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize cache and load any saved entries.

        Args:
            path: Directory holding the cache file, or None for memory only
            expiry_seconds: Age after which entries are not served (0 = never)
            clock: Wall clock in seconds
        """
        self.path = Path(path) / CACHE_FILE if path else None
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._save_failed = False

        if self.path:
            loaded = read_json(self.path, default={})
            if isinstance(loaded, dict):
                self._entries = {
                    k: v for k, v in loaded.items()
                    if isinstance(v, dict) and "response" in v
                }

    def __len__(self):
        return len(self._entries)

    def lookup(self, key: str) -> Optional[Any]:
        """
        Return the cached response for a fingerprint, or None.

        Entries older than expiry_seconds are treated as absent.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.expiry_seconds and self._clock() - entry.get("cached_at", 0) > self.expiry_seconds:
            return None
        return entry["response"]

    def store(self, key: str, response: Any):
        """Record a successful response, replacing any prior entry."""
        with self._lock:
            self._entries[key] = {
                "response": response,
                "cached_at": self._clock(),
            }

    def save(self):
        """Persist all entries; failures are logged once."""
        if not self.path:
            return
        with self._lock:
            snapshot = dict(self._entries)
        try:
            write_json_atomic(self.path, snapshot)
        except OSError as e:
            if not self._save_failed:
                log.warning("Failed to save engage cache to %s: %s", self.path, e)
                self._save_failed = True

    def clear(self):
        """Remove every entry, in memory and on disk."""
        with self._lock:
            self._entries = {}
            if self.path:
                try:
                    if self.path.exists():
                        self.path.unlink()
                except OSError as e:
                    log.warning("Failed to remove engage cache %s: %s", self.path, e)
