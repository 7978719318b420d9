"""Error taxonomy for the archive engine.

Every error raised across the public ``ArchiveEngine`` API derives from
``ArchiveError`` so callers can catch the whole family at once. The MCP
tool registry maps each subclass onto a structured error type.
"""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for archive engine errors."""


class ArchiveOpenError(ArchiveError):
    """The container could not be opened or read as a ZIP package.

    Raised by ``open`` and ``reload``; no session state is installed or
    changed when it is raised.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot open {path}: {reason}")


class NotFoundError(ArchiveError):
    """An unknown container path or internal entry path was addressed."""

    def __init__(self, path: str, internal_path: str | None = None) -> None:
        self.path = path
        self.internal_path = internal_path
        if internal_path is None:
            message = f"No open container for {path}"
        else:
            message = f"Entry '{internal_path}' not found in {path}"
        super().__init__(message)


class SaveError(ArchiveError):
    """Repackaging failed.

    The original container has been restored from its backup unless
    ``restore_failed`` is true, in which case the message says so.
    """

    def __init__(
        self, path: str, reason: str, restore_failed: bool = False
    ) -> None:
        self.path = path
        self.reason = reason
        self.restore_failed = restore_failed
        message = f"Failed to save {path}: {reason}"
        if restore_failed:
            message += (
                f"; restore failed, the backup is kept at {path}.backup"
            )
        super().__init__(message)


class ConflictUnresolved(ArchiveError):
    """The conflict resolver declined to resolve an external change."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f"External change to {path} was left unresolved; "
            "local edits are kept in memory"
        )


class WatcherError(ArchiveError):
    """A file watch could not be established."""
