"""ToolSpec and ToolRegistry for permission-based tool filtering.

Operators can restrict which tools an agent sees, typically to build a
read-only deployment that may open and inspect containers but never
write entries or save them.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required permissions,
  and an async handler with standardized signature (engine, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed permissions at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_permissions_file: Reads a text file of permission names.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...archive.engine import ArchiveEngine
from ...archive.errors import ArchiveError
from .errors import build_error_response, translate_archive_error

logger = logging.getLogger(__name__)

ARCHIVE_VIEW = "ARCHIVE_VIEW"
ARCHIVE_MODIFY = "ARCHIVE_MODIFY"

KNOWN_PERMISSIONS = frozenset({ARCHIVE_VIEW, ARCHIVE_MODIFY})


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Permissions required to use this tool.
            Empty frozenset means the tool is always available.
        handler: Async handler with signature (engine, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[ArchiveEngine, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Permitted tools, keyed by name.

    A spec is registered when *allowed_permissions* is None, when it
    needs no permission, or when every permission it needs is allowed.

    Raises:
        ValueError: If two specs share a tool name.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        seen: set[str] = set()
        for spec in specs:
            name = spec.tool.name
            if name in seen:
                raise ValueError(f"Duplicate tool name: {name}")
            seen.add(name)
            if allowed_permissions is None or spec.permissions <= allowed_permissions:
                self._specs[name] = spec
            else:
                logger.debug(
                    "Tool %s hidden, needs %s",
                    name,
                    ", ".join(sorted(spec.permissions - allowed_permissions)),
                )

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        engine: ArchiveEngine,
    ) -> types.CallToolResult:
        """Run a registered tool, translating failures into error results.

        ``ArchiveError`` subclasses map to their structured error types,
        ``ValueError`` from argument checks to ``validation_error`` and
        anything else to ``server_error``.

        Raises:
            ValueError: If *name* is unknown or was filtered out.
        """
        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return await spec.handler(engine, arguments or {})
        except ArchiveError as e:
            logger.warning("%s failed: %s", name, e)
            return translate_archive_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Retry the operation or check the server log.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load allowed permissions from a text file.

    One permission per line; ``#`` starts a comment line and blank lines
    are ignored::

        # Read-only deployment
        ARCHIVE_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On an unknown permission name or an empty file.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        name = line.strip()
        if not name or name.startswith("#"):
            continue
        if name not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Unknown permission '{name}' at line {line_num} in {path}. "
                f"Expected one of: {', '.join(sorted(KNOWN_PERMISSIONS))}."
            )
        permissions.add(name)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
