"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..archive.engine import ArchiveEngine
from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config, engine_fallbacks
from ..core.async_utils import run_sync

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create the ArchiveEngine

    On shutdown:
    - Close every open container (temp directories are deleted,
      unsaved edits are discarded)
    - Stop the file watcher

    Args:
        config_overrides: Optional dict with config values from CLI
            (debounce_ms, auto_save_ms, conflict_strategy, no_auto_save)

    Yields:
        Dict with 'engine' key containing the ArchiveEngine

    Raises:
        RuntimeError: If configuration is invalid.
    """
    logger.info("MCP server starting...")
    _stderr_print("OpenXML MCP Server starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present, flatten engine/formatter sections as fallbacks
        yaml_fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        sources = []

        if config_files:
            raw = load_hierarchical_config()
            unified = build_config(raw)
            yaml_fallbacks = engine_fallbacks(unified)
            sources.append(f"config file: {config_files[0]}")

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            debounce_ms=overrides.get("debounce_ms"),
            auto_save_ms=overrides.get("auto_save_ms"),
            conflict_strategy=overrides.get("conflict_strategy"),
            no_auto_save=overrides.get("no_auto_save", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    engine = ArchiveEngine(config=config)
    auto_save_desc = (
        f"{config.auto_save_ms} ms" if config.auto_save else "off"
    )
    summary = (
        f"debounce {config.debounce_ms} ms, "
        f"auto-save {auto_save_desc}, "
        f"conflicts: {config.conflict_strategy}"
    )
    logger.info("Archive engine ready (%s)", summary)
    _stderr_print(f"  Engine: {summary}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"engine": engine}
    finally:
        # Shutdown
        logger.info("MCP server shutting down")
        await run_sync(engine.close_all)
        _stderr_print("OpenXML MCP Server shutting down.")
