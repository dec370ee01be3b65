"""
Manifest Store for Persisted Queries

The manifest is a JSON object mapping a query hash to its canonical text:

    {
      "5f0c...e1": "query GetUser { user { id name } }"
    }

It is loaded once at startup and merged forward: entries are added, never removed.
A missing or corrupt manifest is not fatal; the store starts empty, warns, and
replaces the file with the (possibly still empty) map on its next flush. Loading
never writes.
Writes go to a temporary file that is renamed over the manifest, so readers never
see a half-written file, and are debounced so a burst of edits writes once.
"""

import json
import os
import tempfile
import threading
from typing import Callable, Dict, Mapping, Optional

import reporter

DEFAULT_DEBOUNCE_SECONDS = 0.5


def write_json_atomic(path: str, data: object) -> None:
    """Serialize data as pretty-printed JSON and atomically replace path with it."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class ManifestStore:
    """hash -> canonical query text, backed by a JSON file."""

    def __init__(
        self,
        path: str,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        on_flush: Optional[Callable[[], None]] = None,
    ):
        self.path = path
        self.debounce = debounce
        self.on_flush = on_flush
        self.entries: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._dirty = False
        self.load()

    def load(self) -> None:
        """
        Read the manifest from disk.
        On any read or parse failure, warn and start from an empty manifest that
        the next flush writes out.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
            if not isinstance(parsed, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in parsed.items()
            ):
                raise ValueError("manifest must be a JSON object of strings")
        except (OSError, ValueError) as e:
            reporter.print_warning(
                f"Could not read persisted query manifest {self.path} ({e}); starting empty"
            )
            with self._lock:
                self.entries = {}
                self._dirty = True
            return
        with self._lock:
            self.entries = dict(parsed)

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, query_hash: str, text: str) -> bool:
        """Insert or overwrite one entry. Returns True when the manifest changed."""
        with self._lock:
            if self.entries.get(query_hash) == text:
                return False
            self.entries[query_hash] = text
            self._dirty = True
            return True

    def merge(self, entries: Mapping[str, str]) -> int:
        """Record many entries; returns how many were new or changed."""
        changed = 0
        for query_hash, text in entries.items():
            if self.record(query_hash, text):
                changed += 1
        return changed

    def flush(self) -> None:
        """Write the whole manifest to disk now."""
        with self._lock:
            self._cancel_pending()
            snapshot = dict(self.entries)
            self._dirty = False
            write_json_atomic(self.path, snapshot)
        if self.on_flush is not None:
            self.on_flush()

    def schedule_flush(self) -> None:
        """Flush after the debounce window; a later call pushes the write back again."""
        with self._lock:
            self._cancel_pending()
            timer = threading.Timer(self.debounce, self._flush_from_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    @property
    def flush_pending(self) -> bool:
        return self._timer is not None

    def _flush_from_timer(self) -> None:
        with self._lock:
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        try:
            self.flush()
        except OSError as e:
            reporter.print_error(f"Failed to write persisted query manifest {self.path}: {e}")

    def _cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        """Cancel any pending write and flush outstanding changes."""
        with self._lock:
            pending = self._timer is not None
            self._cancel_pending()
            dirty = self._dirty
        if pending or dirty:
            self.flush()
