"""XML formatting tool handler for MCP server.

``xml_format`` pretty-prints either literal XML text or an entry of an
open container. Formatting never modifies the container;
storing the result goes through openxml_write_entry.
"""

import logging
from typing import Any

import mcp.types as types

from ...archive.engine import ArchiveEngine
from ...core.async_utils import run_sync
from ...file_handler import decode_text, is_xml_content
from ...formatting import format_xml
from .registry import ToolSpec

logger = logging.getLogger(__name__)


FORMATTING_TOOLS = [
    types.Tool(
        name="xml_format",
        description="Pretty-print XML. Pass 'xml' to format literal text, or 'path' and 'entry' to format an entry of an open container.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "xml": {
                    "type": "string",
                    "description": "XML text to format",
                },
                "path": {
                    "type": "string",
                    "description": "Path to an open container",
                },
                "entry": {
                    "type": "string",
                    "description": "Entry path inside the container",
                },
                "indent_size": {
                    "type": "integer",
                    "minimum": 0,
                    "maximum": 16,
                    "description": "Spaces per indent level (default from configuration)",
                },
            },
            "required": [],
        },
    ),
]


async def _handle_xml_format(
    engine: ArchiveEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle xml_format."""
    indent_size = args.get("indent_size")
    if indent_size is None:
        indent = engine.config.indent
    elif isinstance(indent_size, int) and 0 <= indent_size <= 16:
        indent = " " * indent_size
    else:
        raise ValueError("indent_size must be an integer between 0 and 16")

    xml = args.get("xml")
    path = args.get("path")
    entry = args.get("entry")

    if xml is not None:
        if path or entry:
            raise ValueError("Pass either xml or path/entry, not both")
        source = xml
    elif path and entry:
        payload = engine.read_entry(path, entry)
        source, _encoding = await run_sync(decode_text, payload)
    else:
        raise ValueError("xml or both path and entry are required")

    if not is_xml_content(source):
        logger.info("xml_format input does not look like XML")

    formatted = await run_sync(format_xml, source, indent)
    structured: dict[str, Any] = {
        "changed": formatted != source,
        "length": len(formatted),
    }
    if entry:
        structured["entry"] = engine.stat_entry(path, entry).internal_path

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=formatted)],
        structuredContent=structured,
    )


FORMATTING_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=FORMATTING_TOOLS[0],
        permissions=frozenset(),
        handler=_handle_xml_format,
    ),
]
