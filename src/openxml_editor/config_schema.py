"""Unified configuration schema for openxml_editor.

Defines Pydantic models for the YAML config structure with dedicated
sections for the sync engine, the XML formatter and logging, plus the
adapter that flattens them into ``load_config()`` fallbacks.

Usage:
    from openxml_editor.config_schema import build_config, engine_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=engine_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EngineSection(BaseModel):
    """Sync engine settings.

    All fields have defaults matching ``EngineConfig`` so the section may
    be omitted entirely.
    """

    debounce_ms: int = Field(
        default=500,
        ge=0,
        le=60_000,
        description="Quiet window collapsing watcher notifications (ms)",
    )
    auto_save_ms: int = Field(
        default=2000,
        ge=0,
        le=3_600_000,
        description="Delay between a synced edit and repackaging (ms)",
    )
    file_age_threshold_ms: int = Field(
        default=10000,
        ge=0,
        description="Temp files not touched within this window are not synced back (ms)",
    )
    auto_save: bool = Field(
        default=True, description="Repackage automatically after edits"
    )
    text_extensions: list[str] = Field(
        default_factory=lambda: [".xml", ".rels"],
        min_length=1,
        description="Entry extensions materialized as editable temp files",
    )
    temp_dir_prefix: str = Field(
        default="openxml-", min_length=1, description="Temp directory prefix"
    )
    conflict_strategy: Literal[
        "reload", "keep", "save-then-reload", "decline"
    ] = Field(
        default="keep",
        description="Resolution applied when the container changes under unsaved edits",
    )

    model_config = {"frozen": True}

    @field_validator("text_extensions")
    @classmethod
    def _normalise_extensions(cls, value: list[str]) -> list[str]:
        out = []
        for ext in value:
            ext = ext.strip().lower()
            if ext and not ext.startswith("."):
                ext = "." + ext
            if ext:
                out.append(ext)
        if not out:
            raise ValueError("text_extensions must not be empty")
        return out


class FormatterSection(BaseModel):
    """XML formatter settings."""

    indent_size: int = Field(
        default=2, ge=0, le=16, description="Spaces per indent level"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    engine: EngineSection = Field(default_factory=EngineSection)
    formatter: FormatterSection = Field(default_factory=FormatterSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def engine_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten a ``UnifiedConfig`` into the ``yaml_fallbacks`` dict
    understood by ``config.load_config()``.

    The formatter's ``indent_size`` becomes an ``indent`` string.

    Args:
        unified: The unified config produced by ``build_config()``.

    Returns:
        Dict keyed by ``EngineConfig`` field names.
    """
    fallbacks = unified.engine.model_dump()
    fallbacks["text_extensions"] = tuple(fallbacks["text_extensions"])
    fallbacks["indent"] = " " * unified.formatter.indent_size
    return fallbacks
