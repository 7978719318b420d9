"""External-change detection and conflict arbitration for containers.

Source notifications are debounced like temp file notifications. The
debounced check compares the container's mtime with the last mtime the
engine agreed with, which filters out the engine's own saves. When the
change collides with unsaved edits the resolver decides.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from openxml_editor.archive.events import EngineListener, emit
from openxml_editor.archive.models import (
    ConflictInfo,
    Resolution,
    SourceChangeOutcome,
)
from openxml_editor.archive.resolver import ConflictResolver
from openxml_editor.archive.session import SOURCE, ArchiveSession
from openxml_editor.config import EngineConfig

logger = logging.getLogger(__name__)

SessionAction = Callable[[ArchiveSession], object]


class SourceWatcher:
    """Arbitrate external changes to an open container.

    Args:
        config: Engine timing configuration.
        listener: Receives ``on_source_deleted``.
        resolver: Consulted when local edits are unsaved.
        reload: Rebuilds a session from disk (lock already held).
        save: Commits a session to disk (lock already held).
    """

    def __init__(
        self,
        config: EngineConfig,
        listener: EngineListener,
        resolver: ConflictResolver,
        reload: SessionAction,
        save: SessionAction,
    ) -> None:
        self.config = config
        self.listener = listener
        self.resolver = resolver
        self._reload = reload
        self._save = save

    def notify(self, session: ArchiveSession) -> None:
        """(Re)arm the debounce timer for the container itself."""
        if session.closed:
            return
        session.timers.schedule(
            SOURCE,
            self.config.debounce_seconds,
            self._debounced_check,
            session,
        )

    def _debounced_check(self, session: ArchiveSession) -> None:
        try:
            self.handle_change(session)
        except Exception:
            logger.exception(
                "Handling external change to %s failed",
                session.original_path,
            )

    def handle_change(self, session: ArchiveSession) -> SourceChangeOutcome:
        """Check the container on disk and apply the resolution policy."""
        with session.lock:
            if session.closed:
                return SourceChangeOutcome.IGNORED

            try:
                current_mtime = Path(session.original_path).stat().st_mtime
            except FileNotFoundError:
                current_mtime = None

            if current_mtime is None:
                logger.warning(
                    "Container %s was deleted; edits stay in memory",
                    session.original_path,
                )
                outcome = SourceChangeOutcome.DELETED
            elif current_mtime <= session.last_known_source_mtime:
                logger.debug(
                    "Ignoring change event for %s: mtime not newer",
                    session.original_path,
                )
                return SourceChangeOutcome.IGNORED
            elif not session.modified:
                logger.info(
                    "Container %s changed externally, reloading",
                    session.original_path,
                )
                self._reload(session)
                return SourceChangeOutcome.RELOADED
            else:
                return self._arbitrate(session, current_mtime)

        emit(self.listener, "on_source_deleted", session.original_path)
        return outcome

    def _arbitrate(
        self, session: ArchiveSession, current_mtime: float
    ) -> SourceChangeOutcome:
        conflict = ConflictInfo(
            original_path=session.original_path,
            modified=session.modified_sorted(),
            known_mtime=session.last_known_source_mtime,
            current_mtime=current_mtime,
        )
        try:
            resolution = self.resolver.resolve(conflict)
        except Exception:
            logger.exception(
                "Conflict resolver failed for %s; treating as declined",
                session.original_path,
            )
            resolution = Resolution.DECLINE

        logger.info(
            "Conflict on %s resolved as '%s'",
            session.original_path,
            resolution.value,
        )
        match resolution:
            case Resolution.RELOAD:
                self._reload(session)
                return SourceChangeOutcome.RELOADED
            case Resolution.KEEP:
                session.last_known_source_mtime = current_mtime
                return SourceChangeOutcome.KEPT
            case Resolution.SAVE_THEN_RELOAD:
                self._save(session)
                self._reload(session)
                return SourceChangeOutcome.SAVED_AND_RELOADED
            case _:
                return SourceChangeOutcome.DECLINED
