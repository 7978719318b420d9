"""Per-container session state.

An ``ArchiveSession`` is the mutable record of one opened container: the
in-memory entry image, the materialized temp files, the set of unsaved
entries and the watches and timers that drive synchronization. Sessions
are created and destroyed by ``ArchiveEngine``; the components in this
package mutate them only while holding ``session.lock``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from openxml_editor.archive.watcher import WatchHandle

logger = logging.getLogger(__name__)

SYNC = "sync"
SOURCE = ("source",)
AUTOSAVE = ("autosave",)


def sync_key(internal_path: str) -> tuple[str, str]:
    """Timer key for the debounced sync-back of one temp file."""
    return (SYNC, internal_path)


class TimerTable:
    """Keyed one-shot timers with cancel-and-replace semantics.

    Scheduling a key that already has a pending timer cancels the old
    one, so a burst of notifications yields a single callback fired
    ``delay`` seconds after the last of them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: dict[Hashable, threading.Timer] = {}

    def schedule(
        self,
        key: Hashable,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> None:
        """(Re)arm the timer for *key*."""
        timer = threading.Timer(delay, self._fire, args=(key, callback, args))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()

    def _fire(
        self, key: Hashable, callback: Callable[..., Any], args: tuple
    ) -> None:
        current = threading.current_thread()
        with self._lock:
            if self._timers.get(key) is current:
                del self._timers[key]
        try:
            callback(*args)
        except Exception:
            # timer threads must never die with an exception
            logger.exception("Timer callback for %s failed", key)

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending timer for *key*. Returns True if one was pending."""
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        """Cancel every pending timer whose key satisfies *predicate*."""
        with self._lock:
            keys = [k for k in self._timers if predicate(k)]
            timers = [self._timers.pop(k) for k in keys]
        for timer in timers:
            timer.cancel()
        return len(timers)

    def cancel_all(self) -> int:
        """Cancel every pending timer."""
        return self.cancel_matching(lambda _key: True)

    def pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)


@dataclass
class ArchiveSession:
    """State of one opened container.

    Invariants: every key of ``temp_files`` is a key of ``entries``;
    ``modified`` is a subset of ``entries``. ``entries``, ``temp_files``
    and ``modified`` are replaced as whole objects on reload so lock-free
    readers never observe a mix of old and new state.
    """

    original_path: str
    temp_dir: Path
    entries: dict[str, bytes] = field(default_factory=dict)
    temp_files: dict[str, Path] = field(default_factory=dict)
    modified: set[str] = field(default_factory=set)
    watches: dict[str, WatchHandle] = field(default_factory=dict)
    source_watch: WatchHandle | None = None
    last_known_source_mtime: float = 0.0
    lock: threading.RLock = field(default_factory=threading.RLock)
    timers: TimerTable = field(default_factory=TimerTable)
    closed: bool = False

    @property
    def name(self) -> str:
        return Path(self.original_path).name

    def has_unsaved_changes(self) -> bool:
        return bool(self.modified)

    def modified_sorted(self) -> list[str]:
        return sorted(self.modified)

    def lookup(self, internal_path: str) -> str | None:
        """Resolve *internal_path* to a stored entry key.

        Exact match first, then a case-insensitive match.
        """
        entries = self.entries
        if internal_path in entries:
            return internal_path
        wanted = internal_path.lower()
        for key in entries:
            if key.lower() == wanted:
                return key
        return None
