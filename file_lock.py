#!/usr/bin/env python3
"""File locking utility for the bounded JSON event log."""

import fcntl
import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class FileLockError(Exception):
    """Raised when file locking fails."""
    pass


@contextmanager
def file_lock(file_path: Path, timeout: float = 5.0, poll_interval: float = 0.05) -> Iterator[None]:
    """
    Context manager for file locking using fcntl.

    Usage:
        with file_lock(Path("events.json")):
            # read/write operations

    Raises FileLockError if the lock is not acquired within ``timeout``
    seconds. Lock files are created owner read/write only (0o600).
    """
    lock_path = file_path.with_suffix(file_path.suffix + ".lock")
    lock_file = open(lock_path, 'w')
    locked = False

    try:
        os.chmod(lock_path, 0o600)
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                locked = True
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise FileLockError(f"Timed out after {timeout}s waiting for {lock_path}")
                time.sleep(poll_interval)
        yield
    finally:
        if locked:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        lock_file.close()


def safe_read_json(file_path: Path, default: Any = None) -> Any:
    """
    Safely read JSON file with file locking.

    Args:
        file_path: Path to JSON file
        default: Value returned if the file doesn't exist or is invalid

    Returns:
        Parsed JSON data or default value
    """
    if not file_path.exists():
        return default

    try:
        with file_lock(file_path):
            return json.loads(file_path.read_text())
    except (json.JSONDecodeError, OSError, FileLockError) as e:
        logger.warning("Failed to read %s: %s", file_path, e)
        return default


def append_json_log(file_path: Path, entry: Dict[str, Any], max_entries: int = 100) -> bool:
    """
    Append an entry to a JSON array file, keeping only the last ``max_entries``.

    A missing or corrupt file starts a new array. Read, trim and write happen
    under one lock so concurrent writers never drop each other's entries.

    Returns:
        True if successful, False otherwise
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        with file_lock(file_path):
            entries: List[Dict[str, Any]] = []
            if file_path.exists():
                try:
                    loaded = json.loads(file_path.read_text() or "[]")
                    if isinstance(loaded, list):
                        entries = loaded
                except json.JSONDecodeError:
                    entries = []

            entries.append(entry)
            if len(entries) > max_entries:
                entries = entries[-max_entries:]

            file_path.write_text(json.dumps(entries, indent=2, default=str))
            os.chmod(file_path, 0o600)
        return True
    except (OSError, FileLockError) as e:
        # Logging here would recurse through the event log handler
        print(f"Error writing event log {file_path}: {e}", file=sys.stderr)
        return False


def read_json_log(file_path: Path) -> Optional[List[Dict[str, Any]]]:
    """Return the event log entries, or None if the log cannot be read."""
    if not file_path.exists():
        return []
    data = safe_read_json(file_path, default=None)
    return data if isinstance(data, list) else None
