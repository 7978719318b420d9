"""Pydantic models and enums for the archive engine.

Defines the data contracts handed across the engine boundary:

- ``Resolution``: Answer of a conflict resolver.
- ``SourceChangeOutcome``: What handling an external change did.
- ``ConflictInfo``: Details handed to the resolver.
- ``EntryInfo``: Metadata for one archive entry.
- ``ContainerInfo``: File information for an open container.
- ``SaveOutcome``: Result of a save request.

All models are frozen (immutable) for safety. The mutable per-container
state lives in ``session.ArchiveSession``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class Resolution(str, Enum):
    """Possible answers to an external-change conflict."""

    RELOAD = "reload"
    KEEP = "keep"
    SAVE_THEN_RELOAD = "save-then-reload"
    DECLINE = "decline"


class SourceChangeOutcome(str, Enum):
    """Result of handling one (debounced) source change notification."""

    DELETED = "deleted"
    IGNORED = "ignored"
    RELOADED = "reloaded"
    KEPT = "kept"
    SAVED_AND_RELOADED = "saved_and_reloaded"
    DECLINED = "declined"


class ConflictInfo(BaseModel):
    """An external change to a container that has unsaved local edits.

    Attributes:
        original_path: Canonical path of the container.
        modified: Internal paths with unsaved edits, sorted.
        known_mtime: Container mtime the engine last agreed with.
        current_mtime: Container mtime observed now.
    """

    original_path: str
    modified: list[str]
    known_mtime: float
    current_mtime: float

    model_config = {"frozen": True}


class EntryInfo(BaseModel):
    """Metadata for a single archive entry.

    Attributes:
        internal_path: ``/``-separated path inside the package.
        size: Payload size in bytes.
        modified: True if the entry differs from the last save.
        is_text: True if the entry is text-like (materialized).
        mime_type: Informational MIME type for XML parts.
        temp_path: Materialized temp file, if any.
    """

    internal_path: str
    size: int
    modified: bool = False
    is_text: bool = False
    mime_type: str | None = None
    temp_path: str | None = None

    model_config = {"frozen": True}


class ContainerInfo(BaseModel):
    """File information for an open container.

    Attributes:
        name: Base file name.
        path: Canonical path.
        size: Size in bytes on disk.
        size_display: Human-readable size ("12.5 KB").
        type: Document type description.
        created: ISO 8601 creation (or metadata change) time.
        modified: ISO 8601 modification time.
        entry_count: Number of file entries in the package.
        has_unsaved: True if any entry has unsaved edits.
        modified_files: Internal paths with unsaved edits, sorted.
    """

    name: str
    path: str
    size: int
    size_display: str
    type: str
    created: str
    modified: str
    entry_count: int
    has_unsaved: bool
    modified_files: list[str] = []

    model_config = {"frozen": True}


class SaveOutcome(BaseModel):
    """Result of a save request.

    Attributes:
        path: Canonical path of the container.
        saved: False when there was nothing to save.
        entries_written: Entries written to the new package.
        flushed: Temp files folded in by the force flush.
    """

    path: str
    saved: bool
    entries_written: int = 0
    flushed: list[str] = []

    model_config = {"frozen": True}
