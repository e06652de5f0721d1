"""
JSONL utilities for the durable stores.

Provides locked line-oriented reading/writing and atomic whole-file JSON
replacement used by the event store, engage cache and action store.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, List, Optional
import fcntl

log = logging.getLogger(__name__)


class JSONLReader:
    """Read raw JSON lines with error handling."""

    @staticmethod
    def read_lines(path: Path) -> List[str]:
        """
        Read every non-empty line of a JSONL file.

        Lines that are not valid JSON are skipped with a warning so a torn
        final write never poisons the rest of the file.

        Args:
            path: Path to JSONL file

        Returns:
            List of JSON strings in file order
        """
        path = Path(path)
        if not path.exists():
            return []

        lines = []
        with open(path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    json.loads(line)
                except json.JSONDecodeError as e:
                    log.warning("Malformed JSON at %s:%d: %s", path, line_num, e)
                    continue
                lines.append(line)

        return lines


class JSONLWriter:
    """Locked JSONL writer for pre-serialized lines."""

    def __init__(self, path: Path):
        """
        Initialize writer.

        Args:
            path: Path to JSONL file
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append_lines(self, lines: List[str]):
        """
        Atomically append serialized lines and fsync.

        Args:
            lines: JSON strings, one per line
        """
        if not lines:
            return

        with open(self.path, 'a', encoding='utf-8') as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                for line in lines:
                    f.write(line + '\n')
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def read_json(path: Path, default: Any = None) -> Any:
    """
    Load a JSON document, returning default when missing or corrupt.

    Args:
        path: Path to JSON file
        default: Value returned when the file cannot be used
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Failed to load %s: %s", path, e)
        return default


def write_json_atomic(path: Path, data: Any, indent: Optional[int] = None):
    """
    Replace a JSON file atomically via a temp file and os.replace.

    Raises:
        OSError: if the directory is not writable
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=path.name, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def is_directory_writable(path: Path) -> bool:
    """Check that path exists (creating it if needed) and accepts files."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        fd, probe = tempfile.mkstemp(dir=str(path), prefix='.probe')
        os.close(fd)
        os.unlink(probe)
        return True
    except OSError:
        return False
