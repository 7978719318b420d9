"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention.
"""

import mcp.types as types

from ...archive.errors import (
    ArchiveError,
    ArchiveOpenError,
    ConflictUnresolved,
    NotFoundError,
    SaveError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, open_failed, save_failed,
            conflict_unresolved, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "No open container for /tmp/a.docx", "Call openxml_open first.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_archive_error(error: ArchiveError) -> types.CallToolResult:
    """Translate an archive engine error to a structured error response.

    Args:
        error: Any ``ArchiveError`` subclass.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case NotFoundError(internal_path=None):
            return build_error_response(
                "not_found",
                str(error),
                "Call openxml_open with the container path first.",
            )
        case NotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Use openxml_list_entries to see the entries of the container.",
            )
        case ArchiveOpenError():
            return build_error_response(
                "open_failed",
                str(error),
                "Check that the path points to a .docx, .xlsx or .pptx package that is not corrupt.",
            )
        case SaveError(restore_failed=True):
            return build_error_response(
                "save_failed",
                str(error),
                "The container may be damaged. Copy the .backup file over it before retrying.",
            )
        case SaveError():
            return build_error_response(
                "save_failed",
                str(error),
                "The original file is unchanged and edits are still pending. "
                "Check that the file is not locked by another program, then retry openxml_save.",
            )
        case ConflictUnresolved():
            return build_error_response(
                "conflict_unresolved",
                str(error),
                "Call openxml_save to overwrite the external change, "
                "or openxml_reload to discard local edits.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Retry the operation; close and reopen the container if it persists.",
            )
