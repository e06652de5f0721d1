"""Persisted actions of triggers flagged persistent, keyed by trigger ID."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from storage.jsonl_utils import read_json, write_json_atomic

log = logging.getLogger(__name__)

ACTIONS_FILE = "actions.json"


class ActionStore:
    """Write-through map from trigger ID to action parameters."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) / ACTIONS_FILE if path else None
        self._lock = threading.Lock()
        self._actions: Dict[str, Dict[str, Any]] = {}
        self._write_failed = False

        if self.path:
            loaded = read_json(self.path, default={})
            if isinstance(loaded, dict):
                self._actions = {k: v for k, v in loaded.items() if isinstance(v, dict)}

    def __contains__(self, trigger_id: str) -> bool:
        return trigger_id in self._actions

    def put(self, trigger_id: str, payload: Dict[str, Any]):
        with self._lock:
            self._actions[trigger_id] = dict(payload)
            self._persist()

    def get(self, trigger_id: str) -> Optional[Dict[str, Any]]:
        payload = self._actions.get(trigger_id)
        return dict(payload) if payload is not None else None

    def remove(self, trigger_id: str):
        with self._lock:
            if self._actions.pop(trigger_id, None) is not None:
                self._persist()

    def clear(self):
        with self._lock:
            self._actions = {}
            self._persist()

    def _persist(self):
        if not self.path:
            return
        try:
            write_json_atomic(self.path, self._actions)
        except OSError as e:
            # Keep serving from memory.
            if not self._write_failed:
                log.warning("Failed to persist action store %s: %s", self.path, e)
                self._write_failed = True
