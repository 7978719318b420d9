"""Atomic repackaging of a session into its container.

The new package is written next to the container as ``<path>.tmp`` and
swapped in with ``os.replace``. A byte copy of the container is kept as
``<path>.backup`` for the duration of the save and restored if anything
fails, so a failed save leaves the original byte-identical.
"""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from pathlib import Path

from openxml_editor.archive import codec
from openxml_editor.archive.errors import SaveError
from openxml_editor.archive.events import EngineListener, emit
from openxml_editor.archive.models import SaveOutcome
from openxml_editor.archive.session import AUTOSAVE, ArchiveSession
from openxml_editor.archive.syncer import TempFileSyncer

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
TMP_SUFFIX = ".tmp"


class Packager:
    """Commit a session's entry image to disk.

    Args:
        syncer: Provides the force flush run before each save.
        listener: Receives ``on_saved``.
    """

    def __init__(self, syncer: TempFileSyncer, listener: EngineListener) -> None:
        self.syncer = syncer
        self.listener = listener

    def save(self, session: ArchiveSession) -> SaveOutcome:
        """Flush temp files and repackage if anything is unsaved.

        Raises:
            SaveError: If any step fails. ``modified`` is left untouched.
        """
        with session.lock:
            if session.closed:
                logger.debug("Skipping save of closed %s", session.original_path)
                return SaveOutcome(path=session.original_path, saved=False)
            flushed = self.syncer.flush_all(session)
            session.timers.cancel(AUTOSAVE)
            if not session.modified:
                logger.debug("Nothing to save for %s", session.original_path)
                return SaveOutcome(
                    path=session.original_path, saved=False, flushed=flushed
                )

            original = Path(session.original_path)
            backup = Path(session.original_path + BACKUP_SUFFIX)
            tmp = Path(session.original_path + TMP_SUFFIX)
            backup_done = False
            try:
                # A deleted container is recreated; there is nothing to back up
                if original.exists():
                    shutil.copy2(original, backup)
                    backup_done = True
                written = codec.write_archive(tmp, session.entries)
                os.replace(tmp, original)
                new_mtime = original.stat().st_mtime
            except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
                logger.error("Save of %s failed: %s", original, exc)
                restore_failed = _rollback(original, backup, tmp, backup_done)
                raise SaveError(
                    session.original_path, str(exc), restore_failed
                ) from exc

            session.last_known_source_mtime = new_mtime
            try:
                backup.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove backup %s: %s", backup, exc)
            saved_paths = session.modified_sorted()
            session.modified = set()
            logger.info(
                "Saved %s (%d entries, %d modified)",
                original,
                written,
                len(saved_paths),
            )

        emit(self.listener, "on_saved", session.original_path)
        return SaveOutcome(
            path=session.original_path,
            saved=True,
            entries_written=written,
            flushed=flushed,
        )


def _rollback(
    original: Path, backup: Path, tmp: Path, backup_done: bool
) -> bool:
    """Restore *original* from *backup* and clean up.

    Returns:
        True if restoring was needed and failed; the backup is then kept.
    """
    restore_failed = False
    if backup_done and backup.exists():
        try:
            shutil.copy2(backup, original)
        except OSError as exc:
            logger.error(
                "Restore of %s from %s failed: %s", original, backup, exc
            )
            restore_failed = True
        else:
            logger.info("Restored %s from backup", original)

    leftovers = [tmp] if restore_failed else [tmp, backup]
    for leftover in leftovers:
        try:
            leftover.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove %s: %s", leftover, exc)
    return restore_failed
