"""MCP tool handlers for OpenXML operations.

This package contains MCP tool implementations that wrap the
ArchiveEngine with async handlers and structured error responses.
"""

from .archive import ARCHIVE_SPECS, ARCHIVE_TOOLS
from .errors import build_error_response, translate_archive_error
from .formatting import FORMATTING_SPECS, FORMATTING_TOOLS
from .registry import (
    ARCHIVE_MODIFY,
    ARCHIVE_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)

ALL_SPECS: list[ToolSpec] = ARCHIVE_SPECS + FORMATTING_SPECS

__all__ = [
    "build_error_response",
    "translate_archive_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "ARCHIVE_VIEW",
    "ARCHIVE_MODIFY",
    # Spec lists
    "ALL_SPECS",
    "ARCHIVE_SPECS",
    "FORMATTING_SPECS",
    # Tool lists
    "ARCHIVE_TOOLS",
    "FORMATTING_TOOLS",
]
