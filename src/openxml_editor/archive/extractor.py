"""Extraction: container -> in-memory entries -> materialized temp files.

Extraction is two-phase. ``read_entries`` produces the complete entry
image off to the side and raises a single ``ArchiveOpenError`` on any
failure; ``materialize`` only runs once that image exists, so a failed
open or reload never leaves a half-populated session behind.
"""

from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path

from openxml_editor.archive import codec
from openxml_editor.archive.errors import ArchiveOpenError
from openxml_editor.file_handler import (
    DEFAULT_TEXT_EXTENSIONS,
    is_text_entry,
    temp_path_for,
)

logger = logging.getLogger(__name__)


def read_entries(container_path: str | os.PathLike) -> dict[str, bytes]:
    """Read every file entry of the container into memory.

    Directory markers are skipped.

    Raises:
        ArchiveOpenError: If the file is missing, unreadable, or not a ZIP.
    """
    entries: dict[str, bytes] = {}
    try:
        for name, payload in codec.iter_entries(container_path):
            if name.endswith("/"):
                continue
            entries[name] = payload
    except zipfile.BadZipFile as exc:
        raise ArchiveOpenError(
            str(container_path), f"not a valid ZIP package ({exc})"
        ) from exc
    except (OSError, zipfile.LargeZipFile, RuntimeError) as exc:
        raise ArchiveOpenError(str(container_path), str(exc)) from exc

    logger.debug("Read %d entries from %s", len(entries), container_path)
    return entries


def materialize(
    entries: dict[str, bytes],
    temp_dir: Path,
    text_extensions: tuple[str, ...] = DEFAULT_TEXT_EXTENSIONS,
) -> dict[str, Path]:
    """Write text-like entries to ``temp_dir/<internal path>``.

    Entries whose names would escape *temp_dir* stay memory-only, as do
    entries whose temp file cannot be written.

    Returns:
        Mapping of internal path to materialized temp file.
    """
    temp_files: dict[str, Path] = {}
    for name, payload in entries.items():
        if not is_text_entry(name, text_extensions):
            continue
        target = temp_path_for(temp_dir, name)
        if target is None:
            logger.warning(
                "Entry %s escapes the temp directory, keeping it in memory only",
                name,
            )
            continue
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            logger.error("Failed to materialize %s: %s", name, exc)
            continue
        temp_files[name] = target

    logger.debug(
        "Materialized %d of %d entries into %s",
        len(temp_files),
        len(entries),
        temp_dir,
    )
    return temp_files


def remove_temp_files(temp_files: dict[str, Path], temp_dir: Path) -> None:
    """Delete materialized files and prune emptied directories under *temp_dir*."""
    for name, path in temp_files.items():
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove temp file for %s: %s", name, exc)

    # deepest first so parents empty out before they are visited
    dirs = sorted(
        (p for p in temp_dir.rglob("*") if p.is_dir()),
        key=lambda p: len(p.parts),
        reverse=True,
    )
    for directory in dirs:
        try:
            directory.rmdir()
        except OSError:
            pass
