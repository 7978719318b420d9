"""OpenXML archive virtualization and bidirectional sync.

Exposes the XML parts of a ZIP-packaged OpenXML document as ordinary
temp files, folds edits back into memory and repackages the container
atomically.

Modules:

- ``engine``         -- ``ArchiveEngine``: registry of sessions, public API.
- ``session``        -- ``ArchiveSession`` state and ``TimerTable``.
- ``codec``          -- ZIP reading and writing.
- ``extractor``      -- Entry reading and temp file materialization.
- ``syncer``         -- ``TempFileSyncer``: debounced temp file sync-back.
- ``source_watcher`` -- ``SourceWatcher``: external change arbitration.
- ``resolver``       -- Conflict resolution policies.
- ``packager``       -- ``Packager``: atomic save with backup/rollback.
- ``watcher``        -- watchdog-backed change notifications.
- ``events``         -- ``EngineListener`` event hooks.
- ``models``         -- Enums and frozen pydantic models.
- ``errors``         -- Error taxonomy.

Usage example
-------------
::

    from openxml_editor.archive import ArchiveEngine

    with ArchiveEngine() as engine:
        session = engine.open("report.docx")
        print(engine.get_temp_file_path("report.docx", "word/document.xml"))
        engine.write_entry("report.docx", "word/document.xml", new_xml)
        engine.save("report.docx")
"""

from .engine import ArchiveEngine
from .errors import (
    ArchiveError,
    ArchiveOpenError,
    ConflictUnresolved,
    NotFoundError,
    SaveError,
    WatcherError,
)
from .events import EngineListener
from .models import (
    ConflictInfo,
    ContainerInfo,
    EntryInfo,
    Resolution,
    SaveOutcome,
    SourceChangeOutcome,
)
from .resolver import (
    CallbackResolver,
    ConflictResolver,
    FixedResolver,
    create_resolver,
)
from .session import ArchiveSession
from .watcher import WatchdogWatcher, Watcher

__all__ = [
    "ArchiveEngine",
    "ArchiveError",
    "ArchiveOpenError",
    "ArchiveSession",
    "CallbackResolver",
    "ConflictInfo",
    "ConflictResolver",
    "ConflictUnresolved",
    "ContainerInfo",
    "EngineListener",
    "EntryInfo",
    "FixedResolver",
    "NotFoundError",
    "Resolution",
    "SaveError",
    "SaveOutcome",
    "SourceChangeOutcome",
    "WatchdogWatcher",
    "Watcher",
    "WatcherError",
    "create_resolver",
]
