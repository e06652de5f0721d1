"""
Durable double-buffered event queue.

Events are appended to the "in" buffer while the "out" buffer is drained
by the uploader. Each buffer is mirrored in memory and in its own JSONL
file; swap() exchanges the roles by renaming the in file over the out file.
"""

import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from storage.jsonl_utils import JSONLReader, JSONLWriter, is_directory_writable

log = logging.getLogger(__name__)

IN_FILE = "events_in.jsonl"
OUT_FILE = "events_out.jsonl"


class EventStore:
    """
    Append-only local buffer for serialized events.

    Storage failures degrade the store to memory-only mode with a single
    warning; queued events are kept in memory either way.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        max_buffer_bytes: int = 1024 * 1024,
        batch_size: int = 1
    ):
        """
        Initialize store.

        Args:
            path: Directory for the buffer files, or None for memory only
            max_buffer_bytes: Capacity ceiling of each buffer
            batch_size: Appends held in memory before being written to disk
        """
        self.path = Path(path) if path else None
        self.max_buffer_bytes = max_buffer_bytes
        self.batch_size = max(1, batch_size)

        self._lock = threading.RLock()
        self._in: List[str] = []
        self._out: List[str] = []
        self._in_bytes = 0
        self._pending: List[str] = []
        self._full_reported = False
        self._persistent = False
        self._initialised = True
        self._in_file: Optional[Path] = None
        self._out_file: Optional[Path] = None

        if self.path is not None:
            self._open()

    def _open(self):
        if not is_directory_writable(self.path):
            log.warning("Event store path %s unwritable, event caching disabled.", self.path)
            return

        self._in_file = self.path / IN_FILE
        self._out_file = self.path / OUT_FILE
        try:
            self._in_writer = JSONLWriter(self._in_file)
            self._in = JSONLReader.read_lines(self._in_file)
            self._out = JSONLReader.read_lines(self._out_file)
        except OSError as e:
            log.warning("Failed to access event store %s, event caching disabled: %s", self.path, e)
            self._in, self._out = [], []
            return

        self._in_bytes = sum(self._line_size(line) for line in self._in)
        self._persistent = True
        if self._in or self._out:
            log.debug("Restored %d queued and %d unsent events", len(self._in), len(self._out))

    @staticmethod
    def _line_size(line: str) -> int:
        return len(line.encode('utf-8')) + 1

    @property
    def is_initialised(self) -> bool:
        return self._initialised

    @property
    def is_persistent(self) -> bool:
        return self._persistent

    @property
    def active_count(self) -> int:
        return len(self._in)

    def _degrade(self, error: Exception):
        if self._persistent:
            log.warning("Event store write failed, continuing in memory: %s", error)
        self._persistent = False
        self._pending.clear()
        self._discard_files()

    def _discard_files(self):
        # Memory is authoritative from here on; files left behind would be
        # restored and uploaded again on the next start.
        for f in (self._in_file, self._out_file):
            if f is None:
                continue
            try:
                if f.exists():
                    f.unlink()
            except OSError as e:
                log.debug("Could not remove stale buffer %s: %s", f, e)

    def _write_pending(self):
        if not self._pending:
            return
        if not self._persistent:
            self._pending.clear()
            return
        try:
            self._in_writer.append_lines(self._pending)
            self._pending.clear()
        except OSError as e:
            self._degrade(e)

    def append(self, serialized_event: str) -> bool:
        """
        Append one serialized event to the active buffer.

        Args:
            serialized_event: Event JSON, one line

        Returns:
            False if the store is closed or the active buffer is full
        """
        with self._lock:
            if not self._initialised:
                return False

            size = self._line_size(serialized_event)
            if self._in_bytes + size > self.max_buffer_bytes:
                if not self._full_reported:
                    log.warning("Event store full (%d bytes), dropping events until next upload",
                                self.max_buffer_bytes)
                    self._full_reported = True
                return False

            self._in.append(serialized_event)
            self._in_bytes += size
            self._pending.append(serialized_event)
            if len(self._pending) >= self.batch_size:
                self._write_pending()
            return True

    def swap(self) -> bool:
        """
        Make the active buffer the inactive one.

        No-op while the inactive buffer still holds an unfinished batch.

        Returns:
            True if the roles were exchanged
        """
        with self._lock:
            if self._out:
                log.debug("Previous batch still queued, not swapping")
                return False

            self._write_pending()
            if self._persistent:
                try:
                    if self._in_file.exists():
                        os.replace(self._in_file, self._out_file)
                    elif self._out_file.exists():
                        self._out_file.unlink()
                except OSError as e:
                    self._degrade(e)

            self._out, self._in = self._in, []
            self._in_bytes = 0
            self._full_reported = False
            return True

    def read(self) -> List[str]:
        """Return the inactive buffer contents in append order."""
        with self._lock:
            return list(self._out)

    def clear_inactive(self):
        """Discard the inactive buffer after upload or rejection."""
        with self._lock:
            self._out = []
            if self._persistent:
                try:
                    if self._out_file.exists():
                        self._out_file.unlink()
                except OSError as e:
                    self._degrade(e)

    def flush(self):
        """Write any appends still held in memory to disk."""
        with self._lock:
            self._write_pending()

    def clear_all(self):
        """Wipe both buffers."""
        with self._lock:
            self._in, self._out, self._pending = [], [], []
            self._in_bytes = 0
            self._full_reported = False
            if self._persistent:
                try:
                    for f in (self._in_file, self._out_file):
                        if f.exists():
                            f.unlink()
                except OSError as e:
                    self._degrade(e)

    def close(self):
        """Flush and stop accepting appends."""
        with self._lock:
            self._write_pending()
            self._initialised = False
