"""ZIP codec: the only module that touches the ZIP format.

Reading is streaming (one entry in memory at a time on the way out of
the generator); writing produces a fresh deflate-compressed package from
a complete entry image.
"""

from __future__ import annotations

import logging
import os
import zipfile
from collections.abc import Iterator, Mapping

logger = logging.getLogger(__name__)

COMPRESSION = zipfile.ZIP_DEFLATED


def iter_entries(path: str | os.PathLike) -> Iterator[tuple[str, bytes]]:
    """Yield ``(name, payload)`` for every member of the ZIP at *path*.

    Directory markers (names ending in ``/``) are yielded with an empty
    payload; callers decide whether to keep them.

    Raises:
        zipfile.BadZipFile: If *path* is not a ZIP archive.
        OSError: If *path* cannot be read.
    """
    with zipfile.ZipFile(path, "r") as zf:
        for info in zf.infolist():
            if info.is_dir():
                yield info.filename, b""
                continue
            yield info.filename, zf.read(info)


def write_archive(
    path: str | os.PathLike, entries: Mapping[str, bytes]
) -> int:
    """Write *entries* as a new ZIP package at *path*.

    ``[Content_Types].xml`` goes first when present, the order OpenXML
    consumers expect; the rest keep their insertion order.

    Returns:
        Number of entries written.
    """
    names = list(entries)
    if "[Content_Types].xml" in entries:
        names.remove("[Content_Types].xml")
        names.insert(0, "[Content_Types].xml")

    with zipfile.ZipFile(path, "w", compression=COMPRESSION) as zf:
        for name in names:
            zf.writestr(name, entries[name])
    logger.debug("Wrote %d entries to %s", len(names), path)
    return len(names)
