"""File-change notification source.

``Watcher`` is the small interface the engine needs: watch one file and
call back on any change to it. ``WatchdogWatcher`` implements it on top
of watchdog by observing the parent directory and filtering events by
path, which also catches editors that save via write-and-rename.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from openxml_editor.archive.errors import WatcherError

logger = logging.getLogger(__name__)

WatchCallback = Callable[[], None]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class WatchHandle(Protocol):
    """Handle returned by ``Watcher.watch``; closing it stops delivery."""

    def close(self) -> None: ...  # pragma: no cover


class Watcher(Protocol):
    """Anything that can deliver change notifications for single files."""

    def watch(self, path: Path, callback: WatchCallback) -> WatchHandle:
        """Start watching *path*.

        Raises:
            WatcherError: If the watch cannot be established.
        """
        ...  # pragma: no cover

    def stop(self) -> None:
        """Release all resources held by the watcher."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# watchdog implementation
# ---------------------------------------------------------------------------


class _FileEventHandler(FileSystemEventHandler):
    """Forward events that concern exactly one file to a callback."""

    def __init__(self, target: Path, callback: WatchCallback) -> None:
        super().__init__()
        self.target = os.fsdecode(target)
        self.callback = callback
        self.active = True

    def _concerns_target(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        if os.fsdecode(event.src_path) == self.target:
            return True
        dest = getattr(event, "dest_path", "")
        return bool(dest) and os.fsdecode(dest) == self.target

    def on_any_event(self, event: FileSystemEvent) -> None:
        if not self.active or event.event_type in ("opened", "closed_no_write"):
            return
        if not self._concerns_target(event):
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Watch callback for %s failed", self.target)


class _WatchdogHandle:
    def __init__(
        self,
        owner: WatchdogWatcher,
        handler: _FileEventHandler,
        watch: ObservedWatch,
    ) -> None:
        self._owner = owner
        self._handler = handler
        self._watch = watch
        self._closed = False

    @property
    def path(self) -> str:
        return self._handler.target

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handler.active = False
        self._owner._release(self._handler, self._watch)


class WatchdogWatcher:
    """``Watcher`` backed by a watchdog observer.

    Args:
        observer: Observer to schedule on. Defaults to the platform's
            native observer; pass a ``PollingObserver`` where inotify and
            friends are unavailable.
    """

    def __init__(self, observer: BaseObserver | None = None) -> None:
        self._observer = observer if observer is not None else Observer()
        self._lock = threading.Lock()
        self._handler_counts: dict[ObservedWatch, int] = {}
        self._started = False

    def watch(self, path: Path, callback: WatchCallback) -> WatchHandle:
        target = Path(path).resolve()
        directory = target.parent
        if not directory.is_dir():
            raise WatcherError(f"Cannot watch {target}: {directory} is not a directory")

        handler = _FileEventHandler(target, callback)
        with self._lock:
            try:
                watch = self._observer.schedule(
                    handler, str(directory), recursive=False
                )
                if not self._started:
                    self._observer.start()
                    self._started = True
            except OSError as exc:
                raise WatcherError(f"Cannot watch {target}: {exc}") from exc
            self._handler_counts[watch] = self._handler_counts.get(watch, 0) + 1

        logger.debug("Watching %s", target)
        return _WatchdogHandle(self, handler, watch)

    def _release(self, handler: _FileEventHandler, watch: ObservedWatch) -> None:
        with self._lock:
            remaining = self._handler_counts.get(watch, 0) - 1
            try:
                if remaining <= 0:
                    self._handler_counts.pop(watch, None)
                    self._observer.unschedule(watch)
                else:
                    self._handler_counts[watch] = remaining
                    self._observer.remove_handler_for_watch(handler, watch)
            except (KeyError, OSError) as exc:
                # directory already gone with the temp dir
                logger.debug("Releasing watch on %s: %s", handler.target, exc)
        logger.debug("Stopped watching %s", handler.target)

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
            self._handler_counts.clear()
            self._observer.unschedule_all()
            self._observer.stop()
        self._observer.join(timeout=5)
