"""Archive tool handlers for MCP server.

This module defines MCP tools for working with open OpenXML containers:
open and close a container, list and read its entries, write entries,
locate the materialized temp files, save, reload and report status.

Archive errors raised by the engine are translated centrally by the
ToolRegistry, so handlers here only validate their arguments.
"""

import base64
import binascii
import logging
from typing import Any

import mcp.types as types

from ...archive.engine import ArchiveEngine
from ...core.async_utils import run_sync
from ...file_handler import decode_text, format_file_size, is_openxml_file
from ...formatting import format_xml
from .registry import ARCHIVE_MODIFY, ARCHIVE_VIEW, ToolSpec

logger = logging.getLogger(__name__)

_PATH_PROPERTY = {
    "type": "string",
    "description": "Path to the .docx/.xlsx/.pptx container (either separator style)",
}
_ENTRY_PROPERTY = {
    "type": "string",
    "description": "Entry path inside the package, e.g. word/document.xml",
}

# Tool definitions for list_tools()
ARCHIVE_TOOLS = [
    types.Tool(
        name="openxml_open",
        description="Open an OpenXML container. Extracts its parts into memory and materializes the XML parts as temp files that sync back on edit.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    ),
    types.Tool(
        name="openxml_close",
        description="Close an open container and delete its temp files. Unsaved edits are discarded.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    ),
    types.Tool(
        name="openxml_list_entries",
        description="List the entries of an open container with size, modified flag and MIME type.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "text_only": {
                    "type": "boolean",
                    "default": False,
                    "description": "Only list text-like (XML) entries",
                },
            },
            "required": ["path"],
        },
    ),
    types.Tool(
        name="openxml_read_entry",
        description="Read one entry of an open container. Text entries are decoded (optionally pretty-printed); binary entries can be read as base64.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "entry": _ENTRY_PROPERTY,
                "encoding": {
                    "type": "string",
                    "enum": ["text", "base64"],
                    "default": "text",
                    "description": "How to return the payload",
                },
                "pretty": {
                    "type": "boolean",
                    "default": False,
                    "description": "Pretty-print XML content (text encoding only)",
                },
            },
            "required": ["path", "entry"],
        },
    ),
    types.Tool(
        name="openxml_write_entry",
        description="Replace or add an entry in memory. The temp file is refreshed and an auto-save is scheduled when enabled.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "entry": _ENTRY_PROPERTY,
                "content": {
                    "type": "string",
                    "description": "New entry content",
                },
                "encoding": {
                    "type": "string",
                    "enum": ["text", "base64"],
                    "default": "text",
                    "description": "Encoding of content (text is stored as UTF-8)",
                },
            },
            "required": ["path", "entry", "content"],
        },
    ),
    types.Tool(
        name="openxml_temp_path",
        description="Return the materialized temp file of an entry, for editing with external tools. Edits sync back automatically.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "entry": _ENTRY_PROPERTY,
            },
            "required": ["path", "entry"],
        },
    ),
    types.Tool(
        name="openxml_save",
        description="Fold pending temp file edits in and repackage the container atomically (backup and rollback on failure).",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    ),
    types.Tool(
        name="openxml_reload",
        description="Rebuild an open container from disk, discarding unsaved edits.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    ),
    types.Tool(
        name="openxml_status",
        description="Report unsaved entries. With a path, optionally checks the container on disk for external changes first; without one, summarises every open container.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "path": _PATH_PROPERTY,
                "check_external": {
                    "type": "boolean",
                    "default": False,
                    "description": "Run the external-change check now (applies the configured conflict strategy)",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="openxml_file_info",
        description="File information for an open container: size, document type, timestamps and unsaved entries.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"path": _PATH_PROPERTY},
            "required": ["path"],
        },
    ),
]


def _require(args: dict[str, Any], *keys: str) -> list[Any]:
    """Return the values of required arguments, raising ValueError if missing."""
    values = []
    for key in keys:
        value = args.get(key)
        if value is None or value == "":
            raise ValueError(f"{key} is required")
        values.append(value)
    return values


def _result(text: str, structured: dict[str, Any]) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


async def _handle_open(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_open."""
    (path,) = _require(args, "path")
    if not is_openxml_file(path):
        logger.warning("Opening %s which has no OpenXML extension", path)

    session = await run_sync(engine.open, path)
    text = (
        f"Opened {session.original_path}: {len(session.entries)} entries, "
        f"{len(session.temp_files)} XML parts materialized in {session.temp_dir}"
    )
    return _result(
        text,
        {
            "path": session.original_path,
            "entries": len(session.entries),
            "materialized": len(session.temp_files),
            "temp_dir": str(session.temp_dir),
        },
    )


async def _handle_close(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_close."""
    (path,) = _require(args, "path")
    discarded = engine.list_modified(path)
    await run_sync(engine.close, path)

    text = f"Closed {path}"
    if discarded:
        text += f" (discarded unsaved edits to {len(discarded)} entries)"
    return _result(text, {"path": str(path), "discarded": discarded})


async def _handle_list_entries(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_list_entries."""
    (path,) = _require(args, "path")
    text_only = args.get("text_only", False)

    entries = engine.list_entries(path)
    if text_only:
        entries = [info for info in entries if info.is_text]

    lines = [f"{len(entries)} entries:"]
    for info in entries:
        marker = " *" if info.modified else ""
        lines.append(
            f"- {info.internal_path} ({format_file_size(info.size)}){marker}"
        )
    return _result(
        "\n".join(lines),
        {"entries": [info.model_dump() for info in entries]},
    )


async def _handle_read_entry(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_read_entry.

    Text payloads are decoded with charset detection; pretty-printing
    uses the engine's configured indent.
    """
    path, entry = _require(args, "path", "entry")
    encoding = args.get("encoding", "text")

    payload = engine.read_entry(path, entry)
    info = engine.stat_entry(path, entry)

    match encoding:
        case "base64":
            content = base64.b64encode(payload).decode("ascii")
            detected = "base64"
        case "text":
            content, detected = await run_sync(decode_text, payload)
            if args.get("pretty", False):
                content = format_xml(content, engine.config.indent)
        case _:
            raise ValueError(
                f"Unknown encoding '{encoding}'. Use 'text' or 'base64'."
            )

    return _result(
        content,
        {
            "entry": info.internal_path,
            "size": info.size,
            "encoding": detected,
            "modified": info.modified,
            "mime_type": info.mime_type,
        },
    )


async def _handle_write_entry(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_write_entry."""
    path, entry = _require(args, "path", "entry")
    content = args.get("content")
    if content is None:
        raise ValueError("content is required")
    encoding = args.get("encoding", "text")

    match encoding:
        case "base64":
            try:
                payload = base64.b64decode(content, validate=True)
            except binascii.Error as e:
                raise ValueError(f"content is not valid base64: {e}") from e
        case "text":
            payload = content.encode("utf-8")
        case _:
            raise ValueError(
                f"Unknown encoding '{encoding}'. Use 'text' or 'base64'."
            )

    await run_sync(engine.write_entry, path, entry, payload)
    info = engine.stat_entry(path, entry)
    auto_save = engine.config.auto_save

    text = f"Wrote {info.internal_path} ({len(payload)} bytes)"
    text += (
        "; auto-save scheduled"
        if auto_save
        else "; call openxml_save to commit"
    )
    return _result(
        text,
        {
            "entry": info.internal_path,
            "bytes_written": len(payload),
            "auto_save": auto_save,
        },
    )


async def _handle_temp_path(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_temp_path."""
    path, entry = _require(args, "path", "entry")
    info = engine.stat_entry(path, entry)
    temp_path = engine.get_temp_file_path(path, info.internal_path)
    if temp_path is None:
        raise ValueError(
            f"Entry '{info.internal_path}' is not materialized as a temp file "
            "(only XML parts are); use openxml_read_entry instead"
        )
    uri = engine.entry_uri(path, info.internal_path)
    return _result(
        str(temp_path),
        {"entry": info.internal_path, "temp_path": str(temp_path), "uri": uri},
    )


async def _handle_save(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_save."""
    (path,) = _require(args, "path")
    outcome = await run_sync(engine.save, path)
    if outcome.saved:
        text = f"Saved {outcome.path} ({outcome.entries_written} entries)"
    else:
        text = f"No unsaved changes in {outcome.path}"
    return _result(text, outcome.model_dump())


async def _handle_reload(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_reload."""
    (path,) = _require(args, "path")
    discarded = engine.list_modified(path)
    await run_sync(engine.reload, path)
    session = engine.get_session(path)
    text = f"Reloaded {session.original_path} ({len(session.entries)} entries)"
    if discarded:
        text += f"; discarded edits to {', '.join(discarded)}"
    return _result(
        text,
        {
            "path": session.original_path,
            "entries": len(session.entries),
            "discarded": discarded,
        },
    )


async def _handle_status(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_status."""
    path = args.get("path")
    if not path:
        containers = [
            {"path": key, "modified": engine.list_modified(key)}
            for key in engine.open_paths()
        ]
        if not containers:
            return _result("No open containers", {"containers": []})
        lines = [f"{len(containers)} open containers:"]
        for item in containers:
            lines.append(f"- {item['path']}: {len(item['modified'])} unsaved")
        return _result("\n".join(lines), {"containers": containers})

    session = engine.get_session(path)
    external = None
    if args.get("check_external", False):
        outcome = await run_sync(engine.check_source, path)
        external = outcome.value

    modified = engine.list_modified(path)
    text = (
        f"{session.original_path}: {len(modified)} unsaved entries"
        if modified
        else f"{session.original_path}: no unsaved changes"
    )
    if modified:
        text += "\n" + "\n".join(f"- {name}" for name in modified)
    if external is not None:
        text += f"\nExternal change check: {external}"
    return _result(
        text,
        {
            "path": session.original_path,
            "has_unsaved": bool(modified),
            "modified": modified,
            "external_check": external,
        },
    )


async def _handle_file_info(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle openxml_file_info."""
    (path,) = _require(args, "path")
    info = await run_sync(engine.get_info, path)
    text = (
        f"Name: {info.name}\n"
        f"Type: {info.type}\n"
        f"Size: {info.size_display}\n"
        f"Created: {info.created}\n"
        f"Modified: {info.modified}\n"
        f"Entries: {info.entry_count}\n"
        f"Unsaved changes: {'yes' if info.has_unsaved else 'no'}"
    )
    if info.modified_files:
        text += "\n" + "\n".join(f"- {name}" for name in info.modified_files)
    return _result(text, info.model_dump())


# ToolSpec list for registry-based dispatch
ARCHIVE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=ARCHIVE_TOOLS[0],
        permissions=frozenset({ARCHIVE_VIEW}),
        handler=_handle_open,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[1],
        permissions=frozenset({ARCHIVE_MODIFY}),
        handler=_handle_close,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[2],
        permissions=frozenset({ARCHIVE_VIEW}),
        handler=_handle_list_entries,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[3],
        permissions=frozenset({ARCHIVE_VIEW}),
        handler=_handle_read_entry,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[4],
        permissions=frozenset({ARCHIVE_MODIFY}),
        handler=_handle_write_entry,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[5],
        permissions=frozenset({ARCHIVE_MODIFY}),
        handler=_handle_temp_path,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[6],
        permissions=frozenset({ARCHIVE_MODIFY}),
        handler=_handle_save,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[7],
        permissions=frozenset({ARCHIVE_MODIFY}),
        handler=_handle_reload,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[8],
        permissions=frozenset({ARCHIVE_VIEW}),
        handler=_handle_status,
    ),
    ToolSpec(
        tool=ARCHIVE_TOOLS[9],
        permissions=frozenset({ARCHIVE_VIEW}),
        handler=_handle_file_info,
    ),
]
