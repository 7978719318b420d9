"""Temp file -> memory synchronization.

``TempFileSyncer`` folds edits made to materialized temp files back into
the session's entry image. Watch notifications are debounced per file;
the debounced ``sync_back`` compares bytes so editor noise (touch, save
without changes) never marks an entry modified. ``flush_all`` is the
force flush a save performs first.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from openxml_editor.archive.events import EngineListener, emit
from openxml_editor.archive.session import AUTOSAVE, ArchiveSession, sync_key
from openxml_editor.config import EngineConfig

logger = logging.getLogger(__name__)


class TempFileSyncer:
    """Debounced sync-back of temp file edits.

    Args:
        config: Engine timing configuration.
        listener: Receives ``on_changed``.
        auto_save: Called with the session when the auto-save timer
            fires; ``None`` disables auto-save arming.
    """

    def __init__(
        self,
        config: EngineConfig,
        listener: EngineListener,
        auto_save: Callable[[ArchiveSession], None] | None = None,
    ) -> None:
        self.config = config
        self.listener = listener
        self.auto_save = auto_save

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(self, session: ArchiveSession, internal_path: str) -> None:
        """(Re)arm the debounce timer for one temp file."""
        if session.closed:
            return
        session.timers.schedule(
            sync_key(internal_path),
            self.config.debounce_seconds,
            self._debounced_sync,
            session,
            internal_path,
        )

    def _debounced_sync(
        self, session: ArchiveSession, internal_path: str
    ) -> None:
        try:
            self.sync_back(session, internal_path)
        except Exception:
            logger.exception(
                "Sync-back of %s in %s failed",
                internal_path,
                session.original_path,
            )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_back(self, session: ArchiveSession, internal_path: str) -> bool:
        """Fold one temp file into memory.

        Returns:
            True if the entry changed in memory.
        """
        with session.lock:
            if session.closed:
                logger.debug(
                    "Ignoring sync of %s: session closed", internal_path
                )
                return False

            temp_path = session.temp_files.get(internal_path)
            if temp_path is None:
                logger.debug("Ignoring sync of unmapped entry %s", internal_path)
                return False

            try:
                mtime = temp_path.stat().st_mtime
            except FileNotFoundError:
                logger.warning(
                    "Temp file for %s no longer exists: %s",
                    internal_path,
                    temp_path,
                )
                return False

            age = time.time() - mtime
            if age > self.config.file_age_threshold_seconds:
                logger.debug(
                    "Skipping stale temp file %s (%.1fs old)",
                    temp_path,
                    age,
                )
                return False

            try:
                data = temp_path.read_bytes()
            except OSError as exc:
                logger.error("Cannot read temp file %s: %s", temp_path, exc)
                return False

            if data == session.entries.get(internal_path):
                logger.debug("No content change in %s", internal_path)
                return False

            session.entries[internal_path] = data
            session.modified.add(internal_path)
            logger.info(
                "Synced %s into %s (%d bytes)",
                internal_path,
                session.name,
                len(data),
            )

        emit(self.listener, "on_changed", session.original_path, internal_path)
        self.arm_auto_save(session)
        return True

    def flush_all(self, session: ArchiveSession) -> list[str]:
        """Fold every differing temp file into memory, ignoring file age.

        Returns:
            Internal paths whose entries changed.
        """
        folded: list[str] = []
        with session.lock:
            for internal_path, temp_path in list(session.temp_files.items()):
                try:
                    data = temp_path.read_bytes()
                except OSError as exc:
                    logger.warning(
                        "Flush skipped %s: cannot read %s: %s",
                        internal_path,
                        temp_path,
                        exc,
                    )
                    continue
                if data != session.entries.get(internal_path):
                    session.entries[internal_path] = data
                    session.modified.add(internal_path)
                    folded.append(internal_path)
                session.timers.cancel(sync_key(internal_path))

        if folded:
            logger.debug("Flushed %d temp files of %s", len(folded), session.name)
        for internal_path in folded:
            emit(self.listener, "on_changed", session.original_path, internal_path)
        return folded

    # ------------------------------------------------------------------
    # Auto-save
    # ------------------------------------------------------------------

    def arm_auto_save(self, session: ArchiveSession) -> None:
        """(Re)arm the per-session auto-save timer when enabled."""
        if not self.config.auto_save or self.auto_save is None:
            return
        if session.closed:
            return
        session.timers.schedule(
            AUTOSAVE,
            self.config.auto_save_seconds,
            self.auto_save,
            session,
        )
