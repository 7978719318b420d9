"""Public API of the archive virtualization engine.

``ArchiveEngine`` owns the registry of open containers (one
``ArchiveSession`` per canonical path) and wires the components of this
package together:

1. ``open`` reads the container, materializes text-like entries into a
   private temp directory and attaches one watch per temp file plus one
   on the container itself.
2. Temp file notifications go through ``TempFileSyncer`` (debounced
   sync-back, auto-save arming).
3. Container notifications go through ``SourceWatcher`` (external change
   detection, conflict arbitration).
4. ``save`` runs the ``Packager`` (force flush, atomic repackaging).
5. ``close`` cancels timers, closes watches and deletes the temp
   directory; no callback has any effect afterwards.

All mutations of a session happen under its lock. Readers work on the
current map references without locking.
"""

from __future__ import annotations

import functools
import logging
import re
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from openxml_editor.archive.errors import (
    ArchiveOpenError,
    ConflictUnresolved,
    NotFoundError,
    SaveError,
    WatcherError,
)
from openxml_editor.archive.events import EngineListener, emit
from openxml_editor.archive.extractor import (
    materialize,
    read_entries,
    remove_temp_files,
)
from openxml_editor.archive.models import (
    ContainerInfo,
    EntryInfo,
    SaveOutcome,
    SourceChangeOutcome,
)
from openxml_editor.archive.packager import Packager
from openxml_editor.archive.resolver import ConflictResolver, create_resolver
from openxml_editor.archive.session import AUTOSAVE, SYNC, ArchiveSession
from openxml_editor.archive.source_watcher import SourceWatcher
from openxml_editor.archive.syncer import TempFileSyncer
from openxml_editor.archive.watcher import Watcher, WatchdogWatcher
from openxml_editor.config import EngineConfig
from openxml_editor.file_handler import (
    canonical_path,
    describe_file_type,
    entry_mime_type,
    format_file_size,
    is_text_entry,
    short_hash,
    temp_path_for,
)

logger = logging.getLogger(__name__)

URI_SCHEME = "openxml"
_URI_PATTERN = re.compile(
    r"^openxml:/(?P<name>[^\[\]]*)\[(?P<id>[A-Za-z0-9_-]+)\]/(?P<internal>.*)$"
)


def normalize_internal_path(internal_path: str) -> str:
    """Return the ``/``-separated form of an entry path."""
    return internal_path.replace("\\", "/").lstrip("/")


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


class ArchiveEngine:
    """Registry of open containers and the operations on them.

    Args:
        config: Engine configuration. Defaults to ``EngineConfig()``.
        resolver: Conflict resolver. Defaults to one built from
            ``config.conflict_strategy``.
        listener: Event sink. Defaults to a no-op ``EngineListener``.
        watcher: Change notification source. Defaults to a
            ``WatchdogWatcher`` owned (and stopped) by the engine.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        resolver: ConflictResolver | None = None,
        listener: EngineListener | None = None,
        watcher: Watcher | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.listener = listener or EngineListener()
        self.resolver = resolver or create_resolver(self.config.conflict_strategy)
        self._owns_watcher = watcher is None
        self.watcher: Watcher = watcher or WatchdogWatcher()

        self._sessions: dict[str, ArchiveSession] = {}
        self._registry_lock = threading.RLock()
        self._uri_ids: dict[str, str] = {}

        self.syncer = TempFileSyncer(
            self.config, self.listener, auto_save=self._auto_save
        )
        self.packager = Packager(self.syncer, self.listener)
        self.source_watcher = SourceWatcher(
            self.config,
            self.listener,
            self.resolver,
            reload=self._reload,
            save=self.packager.save,
        )

    def __enter__(self) -> ArchiveEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close_all()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def open(self, path: str | Path) -> ArchiveSession:
        """Open a container, or return the session already open for it.

        Raises:
            ArchiveOpenError: If the file is missing or not a ZIP package.
        """
        key = canonical_path(path)
        with self._registry_lock:
            existing = self._sessions.get(key)
            if existing is not None:
                logger.debug("Container %s already open", key)
                return existing

            source = Path(key)
            if not source.is_file():
                raise ArchiveOpenError(key, "file not found")
            try:
                mtime = source.stat().st_mtime
            except OSError as exc:
                raise ArchiveOpenError(key, str(exc)) from exc

            entries = read_entries(key)
            try:
                temp_dir = Path(tempfile.mkdtemp(prefix=self.config.temp_dir_prefix))
            except OSError as exc:
                raise ArchiveOpenError(
                    key, f"cannot create temp directory: {exc}"
                ) from exc

            temp_files = materialize(entries, temp_dir, self.config.text_extensions)
            session = ArchiveSession(
                original_path=key,
                temp_dir=temp_dir,
                entries=entries,
                temp_files=temp_files,
                last_known_source_mtime=mtime,
            )
            self._sessions[key] = session

        with session.lock:
            self._attach_temp_watches(session)
            self._attach_source_watch(session)

        logger.info(
            "Opened %s: %d entries, %d materialized in %s",
            key,
            len(entries),
            len(temp_files),
            temp_dir,
        )
        return session

    def close(self, path: str | Path) -> None:
        """Close a container and delete its temp directory. Idempotent.

        Unsaved edits are discarded.
        """
        key = canonical_path(path)
        session = self._sessions.get(key)
        if session is None:
            return

        with session.lock:
            if not session.closed:
                session.closed = True
                session.timers.cancel_all()
                self._detach_temp_watches(session)
                if session.source_watch is not None:
                    session.source_watch.close()
                    session.source_watch = None
                if session.modified:
                    logger.warning(
                        "Closing %s with %d unsaved entries",
                        key,
                        len(session.modified),
                    )
                try:
                    shutil.rmtree(session.temp_dir)
                except OSError as exc:
                    logger.warning(
                        "Could not remove temp directory %s: %s",
                        session.temp_dir,
                        exc,
                    )

        with self._registry_lock:
            if self._sessions.get(key) is session:
                del self._sessions[key]
        logger.info("Closed %s", key)

    def close_all(self) -> None:
        """Close every open container and stop an engine-owned watcher."""
        for key in list(self._sessions):
            self.close(key)
        if self._owns_watcher:
            self.watcher.stop()

    def open_paths(self) -> list[str]:
        return sorted(self._sessions)

    def get_session(self, path: str | Path) -> ArchiveSession:
        """Return the open session for *path*.

        Raises:
            NotFoundError: If no container is open at *path*.
        """
        key = canonical_path(path)
        session = self._sessions.get(key)
        if session is None or session.closed:
            raise NotFoundError(key)
        return session

    def _find(self, path: str | Path) -> ArchiveSession | None:
        session = self._sessions.get(canonical_path(path))
        if session is None or session.closed:
            return None
        return session

    # ------------------------------------------------------------------
    # Entry access
    # ------------------------------------------------------------------

    def _resolve_entry(self, session: ArchiveSession, internal_path: str) -> str:
        key = session.lookup(normalize_internal_path(internal_path))
        if key is None:
            raise NotFoundError(session.original_path, internal_path)
        return key

    def read_entry(self, path: str | Path, internal_path: str) -> bytes:
        """Return the in-memory bytes of an entry.

        Raises:
            NotFoundError: Unknown container or entry.
        """
        session = self.get_session(path)
        key = self._resolve_entry(session, internal_path)
        return session.entries[key]

    def write_entry(
        self, path: str | Path, internal_path: str, data: bytes | str
    ) -> None:
        """Replace (or add) an entry in memory and refresh its temp file.

        Raises:
            NotFoundError: Unknown container.
        """
        payload = data.encode("utf-8") if isinstance(data, str) else data
        session = self.get_session(path)
        with session.lock:
            if session.closed:
                raise NotFoundError(session.original_path)
            key = session.lookup(normalize_internal_path(internal_path))
            if key is None:
                key = normalize_internal_path(internal_path)
                if not key or key.endswith("/"):
                    raise ValueError(f"Invalid entry path: '{internal_path}'")

            session.entries[key] = payload
            session.modified.add(key)
            self._refresh_temp_file(session, key, payload)

        logger.info("Wrote %s in %s (%d bytes)", key, session.name, len(payload))
        emit(self.listener, "on_changed", session.original_path, key)
        self.syncer.arm_auto_save(session)

    def _refresh_temp_file(
        self, session: ArchiveSession, key: str, payload: bytes
    ) -> None:
        temp_path = session.temp_files.get(key)
        if temp_path is None:
            if not is_text_entry(key, self.config.text_extensions):
                return
            temp_path = temp_path_for(session.temp_dir, key)
            if temp_path is None:
                return
        try:
            temp_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(payload)
        except OSError as exc:
            logger.error("Failed to refresh temp file for %s: %s", key, exc)
            return
        if key not in session.temp_files:
            session.temp_files[key] = temp_path
            self._attach_temp_watch(session, key, temp_path)

    def stat_entry(self, path: str | Path, internal_path: str) -> EntryInfo:
        session = self.get_session(path)
        key = self._resolve_entry(session, internal_path)
        return self._entry_info(session, key)

    def _entry_info(self, session: ArchiveSession, key: str) -> EntryInfo:
        temp_path = session.temp_files.get(key)
        return EntryInfo(
            internal_path=key,
            size=len(session.entries.get(key, b"")),
            modified=key in session.modified,
            is_text=is_text_entry(key, self.config.text_extensions),
            mime_type=entry_mime_type(key),
            temp_path=str(temp_path) if temp_path is not None else None,
        )

    def list_entries(self, path: str | Path) -> list[EntryInfo]:
        session = self.get_session(path)
        return [self._entry_info(session, key) for key in sorted(session.entries)]

    def get_temp_file_path(
        self, path: str | Path, internal_path: str
    ) -> Path | None:
        """Temp file backing an entry, or None if unknown or not materialized."""
        session = self._find(path)
        if session is None:
            return None
        key = session.lookup(normalize_internal_path(internal_path))
        if key is None:
            return None
        return session.temp_files.get(key)

    # ------------------------------------------------------------------
    # Save / reload
    # ------------------------------------------------------------------

    def save(self, path: str | Path) -> SaveOutcome:
        """Flush temp files and repackage the container.

        Raises:
            NotFoundError: Unknown container.
            SaveError: Repackaging failed; the original is restored.
        """
        return self.packager.save(self.get_session(path))

    def _auto_save(self, session: ArchiveSession) -> None:
        if session.closed:
            return
        try:
            self.packager.save(session)
        except SaveError as exc:
            logger.error("Auto-save of %s failed: %s", session.original_path, exc)
            emit(self.listener, "on_save_failed", session.original_path, exc)

    def reload(self, path: str | Path) -> None:
        """Rebuild a session from the container on disk, discarding edits.

        Raises:
            NotFoundError: Unknown container.
            ArchiveOpenError: The container cannot be read; the session
                is left untouched.
        """
        self._reload(self.get_session(path))

    def _reload(self, session: ArchiveSession) -> None:
        source = Path(session.original_path)

        # Read under the lock so a reload queued behind a save sees its result
        with session.lock:
            if session.closed:
                return
            try:
                mtime = source.stat().st_mtime
            except OSError as exc:
                raise ArchiveOpenError(session.original_path, str(exc)) from exc
            entries = read_entries(source)

            session.timers.cancel_matching(
                lambda key: key == AUTOSAVE or key[0] == SYNC
            )
            self._detach_temp_watches(session)
            remove_temp_files(session.temp_files, session.temp_dir)
            temp_files = materialize(
                entries, session.temp_dir, self.config.text_extensions
            )
            session.entries = entries
            session.temp_files = temp_files
            session.modified = set()
            session.last_known_source_mtime = mtime
            self._attach_temp_watches(session)

        logger.info(
            "Reloaded %s: %d entries", session.original_path, len(entries)
        )
        emit(self.listener, "on_reloaded", session.original_path)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def has_unsaved_changes(self, path: str | Path) -> bool:
        session = self._find(path)
        return session is not None and session.has_unsaved_changes()

    def list_modified(self, path: str | Path) -> list[str]:
        session = self._find(path)
        if session is None:
            return []
        return session.modified_sorted()

    def get_info(self, path: str | Path) -> ContainerInfo:
        """File information for an open container.

        Raises:
            NotFoundError: Unknown container.
            ArchiveOpenError: The container is missing on disk.
        """
        session = self.get_session(path)
        source = Path(session.original_path)
        try:
            st = source.stat()
        except OSError as exc:
            raise ArchiveOpenError(session.original_path, str(exc)) from exc
        return ContainerInfo(
            name=source.name,
            path=session.original_path,
            size=st.st_size,
            size_display=format_file_size(st.st_size),
            type=describe_file_type(source.suffix),
            created=_iso(st.st_ctime),
            modified=_iso(st.st_mtime),
            entry_count=len(session.entries),
            has_unsaved=session.has_unsaved_changes(),
            modified_files=session.modified_sorted(),
        )

    # ------------------------------------------------------------------
    # Entry URIs
    # ------------------------------------------------------------------

    def _container_id(self, key: str) -> str:
        with self._registry_lock:
            length = 6
            while True:
                candidate = short_hash(key, length)
                owner = self._uri_ids.get(candidate)
                if owner is None or owner == key:
                    self._uri_ids[candidate] = key
                    return candidate
                length += 2

    def entry_uri(self, path: str | Path, internal_path: str) -> str:
        """Readable URI for an entry: ``openxml:/<Name>[<id>]/<internal>``."""
        session = self.get_session(path)
        container_id = self._container_id(session.original_path)
        internal = normalize_internal_path(internal_path)
        return f"{URI_SCHEME}:/{session.name}[{container_id}]/{internal}"

    def resolve_entry_uri(self, uri: str) -> tuple[str, str]:
        """Map a URI from ``entry_uri`` back to ``(path, internal_path)``.

        Raises:
            ValueError: Malformed URI.
            NotFoundError: The URI's container id is unknown.
        """
        match = _URI_PATTERN.match(uri)
        if match is None:
            raise ValueError(f"Not an {URI_SCHEME} entry URI: '{uri}'")
        key = self._uri_ids.get(match.group("id"))
        if key is None:
            raise NotFoundError(uri)
        return key, match.group("internal")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def handle_temp_file_event(self, path: str | Path, internal_path: str) -> None:
        """A temp file changed; schedule its debounced sync-back."""
        session = self._find(path)
        if session is None:
            return
        key = session.lookup(normalize_internal_path(internal_path))
        if key is None or key not in session.temp_files:
            return
        self.syncer.notify(session, key)

    def handle_source_event(self, path: str | Path) -> None:
        """The container changed on disk; schedule the debounced check."""
        session = self._find(path)
        if session is None:
            return
        self.source_watcher.notify(session)

    def check_source(
        self, path: str | Path, strict: bool = False
    ) -> SourceChangeOutcome:
        """Run the external-change check now, bypassing the debounce.

        Raises:
            NotFoundError: Unknown container.
            ConflictUnresolved: With *strict*, if the resolver declined.
        """
        session = self.get_session(path)
        outcome = self.source_watcher.handle_change(session)
        if strict and outcome is SourceChangeOutcome.DECLINED:
            raise ConflictUnresolved(session.original_path)
        return outcome

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def _on_temp_event(self, session: ArchiveSession, internal_path: str) -> None:
        if session.closed:
            return
        self.syncer.notify(session, internal_path)

    def _on_source_event(self, session: ArchiveSession) -> None:
        if session.closed:
            return
        self.source_watcher.notify(session)

    def _attach_temp_watch(
        self, session: ArchiveSession, internal_path: str, temp_path: Path
    ) -> None:
        try:
            session.watches[internal_path] = self.watcher.watch(
                temp_path,
                functools.partial(self._on_temp_event, session, internal_path),
            )
        except WatcherError as exc:
            logger.error(
                "%s; edits to %s will not sync until reload", exc, internal_path
            )

    def _attach_temp_watches(self, session: ArchiveSession) -> None:
        for internal_path, temp_path in session.temp_files.items():
            self._attach_temp_watch(session, internal_path, temp_path)

    def _detach_temp_watches(self, session: ArchiveSession) -> None:
        watches, session.watches = session.watches, {}
        for handle in watches.values():
            handle.close()

    def _attach_source_watch(self, session: ArchiveSession) -> None:
        try:
            session.source_watch = self.watcher.watch(
                Path(session.original_path),
                functools.partial(self._on_source_event, session),
            )
        except WatcherError as exc:
            logger.error(
                "%s; external changes to %s will not be detected",
                exc,
                session.original_path,
            )
