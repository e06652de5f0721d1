"""
Small persistent key-value store for session scalars.

Holds user ID, first/last session timestamps and similar strings in a
single JSON file. Best effort: a failed write is logged and the value
stays available in memory for the lifetime of the process.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional

from .jsonl_utils import read_json, write_json_atomic

log = logging.getLogger(__name__)


class KeyValueStore:
    """String key-value store backed by one JSON file."""

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize store.

        Args:
            path: JSON file path, or None for memory only
        """
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._values: Dict[str, str] = {}

        if self.path:
            loaded = read_json(self.path, default={})
            if isinstance(loaded, dict):
                self._values = {k: str(v) for k, v in loaded.items() if v is not None}

    def has_key(self, key: str) -> bool:
        return key in self._values

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set_string(self, key: str, value: str):
        with self._lock:
            self._values[key] = value
            self._persist()

    def delete(self, key: str):
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._persist()

    def _persist(self):
        if not self.path:
            return
        try:
            write_json_atomic(self.path, self._values)
        except OSError as e:
            log.warning("Failed to persist key-value store %s: %s", self.path, e)
