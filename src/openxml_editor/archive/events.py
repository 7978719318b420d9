"""Engine event sink.

Subclass ``EngineListener`` and override the hooks of interest; every
hook is a no-op by default. Hooks run on whichever thread produced the
event (a timer, the watcher or the caller) and must not block.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class EngineListener:
    """No-op base class for engine events."""

    def on_changed(self, path: str, internal_path: str) -> None:
        """An entry was updated in memory from its temp file or a direct write."""

    def on_reloaded(self, path: str) -> None:
        """The session was rebuilt from the container on disk."""

    def on_saved(self, path: str) -> None:
        """The in-memory image was committed to the container."""

    def on_save_failed(self, path: str, error: Exception) -> None:
        """An automatic save failed; the unsaved set is intact."""

    def on_source_deleted(self, path: str) -> None:
        """The container disappeared from disk; the session is kept."""


def emit(listener: EngineListener, hook: str, *args: object) -> None:
    """Invoke *hook* on *listener*, logging instead of raising on failure."""
    try:
        getattr(listener, hook)(*args)
    except Exception:
        logger.exception("Listener hook %s failed", hook)
