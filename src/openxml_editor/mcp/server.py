"""MCP Server for OpenXML editing using stdio transport.

This module implements the Model Context Protocol server that enables
AI agents to open OpenXML containers, edit their XML parts (directly or
through the materialized temp files) and save them back.

Transport: stdio (the client launches the server as a subprocess)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..archive.engine import ArchiveEngine
from ..config import CONFLICT_STRATEGIES
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("openxml-mcp-server")

# Global engine instance (initialized in lifespan)
_engine: ArchiveEngine | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> ArchiveEngine:
    """Get the global ArchiveEngine instance.

    Returns:
        ArchiveEngine instance

    Raises:
        RuntimeError: If engine is not initialized
    """
    if _engine is None:
        raise RuntimeError(
            "ArchiveEngine not initialized. Server lifespan not started."
        )
    return _engine


def set_engine(engine: ArchiveEngine | None) -> None:
    """Set the global ArchiveEngine instance.

    Args:
        engine: ArchiveEngine instance to set, or None to clear
    """
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Returns:
        ToolRegistry instance

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance.

    Args:
        registry: ToolRegistry instance to set, or None to clear
    """
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available OpenXML tools.

    Returns all registered (and permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    This function sets up logging for MCP mode (file only, never stdout),
    creates the engine via the lifespan manager, and starts the server
    with stdio transport for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override
            (debounce_ms, auto_save_ms, conflict_strategy, no_auto_save,
            log_file, permissions_file)
    """
    log_file = (
        config_overrides.get("log_file") if config_overrides else None
    )

    # Must run BEFORE stdio_server so nothing reaches stdout during
    # protocol negotiation
    setup_logging(mode="mcp", log_file=log_file)

    # Version check (non-blocking warning for stale installs)
    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"⚠️  Warning: {message}\n")
    else:
        logger.info(message)

    # Build ToolRegistry with optional permission filtering
    permissions_file = (
        config_overrides.get("permissions_file")
        if config_overrides
        else None
    )
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    registry = ToolRegistry(ALL_SPECS, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(ALL_SPECS),
    )

    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(ALL_SPECS)} tools enabled)",
            file=sys.stderr,
        )

    set_registry(registry)

    # set_engine() is called here rather than inside the lifespan: when run
    # via `python -m openxml_editor.mcp.server` this module is __main__, and
    # a relative import from lifespan.py would update a second copy of it.
    async with server_lifespan(
        config_overrides=config_overrides
    ) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="openxml-mcp-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_engine(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser for ``openxml-mcp-server``."""
    parser = argparse.ArgumentParser(
        description="OpenXML MCP Server - edit the XML parts of .docx/.xlsx/.pptx files over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .openxml_editor/config.yml)
  openxml-mcp-server

  # Save only on request, never automatically
  openxml-mcp-server --no-auto-save

  # Throw away local edits when a container changes on disk
  openxml-mcp-server --conflict-strategy reload

  # Custom log file location
  openxml-mcp-server --log-file /var/log/openxml-editor.log

  # Read-only deployment
  openxml-mcp-server --permissions-file /etc/openxml-editor/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--debounce-ms",
        type=int,
        help="Quiet window for file change notifications in milliseconds "
        "(takes precedence over OPENXML_DEBOUNCE_MS and config files)",
    )
    parser.add_argument(
        "--auto-save-ms",
        type=int,
        help="Delay between a synced edit and the automatic save in milliseconds "
        "(takes precedence over OPENXML_AUTO_SAVE_MS and config files)",
    )
    parser.add_argument(
        "--no-auto-save",
        action="store_true",
        help="Never save automatically; use the openxml_save tool",
    )
    parser.add_argument(
        "--conflict-strategy",
        choices=CONFLICT_STRATEGIES,
        help="What to do when a container changes on disk while edits are unsaved",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (ARCHIVE_VIEW, ARCHIVE_MODIFY), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"openxml-mcp-server version {__version__}",
    )
    return parser


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    # Build config overrides dict from CLI args
    config_overrides = {}
    if args.debounce_ms is not None:
        config_overrides["debounce_ms"] = args.debounce_ms
    if args.auto_save_ms is not None:
        config_overrides["auto_save_ms"] = args.auto_save_ms
    if args.no_auto_save:
        config_overrides["no_auto_save"] = True
    if args.conflict_strategy:
        config_overrides["conflict_strategy"] = args.conflict_strategy
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(
            main(
                config_overrides=config_overrides
                if config_overrides
                else None
            )
        )
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
