"""Engine configuration.

Reads sync timing, materialization and conflict settings from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    OPENXML_DEBOUNCE_MS: Quiet window for watcher notifications (default: 500)
    OPENXML_AUTO_SAVE_MS: Delay before an automatic repackage (default: 2000)
    OPENXML_FILE_AGE_MS: Temp files older than this are not synced back (default: 10000)
    OPENXML_AUTO_SAVE: Enable automatic repackaging (default: true)
    OPENXML_CONFLICT_STRATEGY: reload, keep, save-then-reload or decline (default: keep)
    OPENXML_INDENT_SIZE: Spaces per indent level for the XML formatter (default: 2)
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("reload", "keep", "save-then-reload", "decline")


@dataclass
class EngineConfig:
    debounce_ms: int = 500
    auto_save_ms: int = 2000
    file_age_threshold_ms: int = 10000
    auto_save: bool = True
    text_extensions: tuple[str, ...] = (".xml", ".rels")
    temp_dir_prefix: str = "openxml-"
    conflict_strategy: str = "keep"
    indent: str = "  "

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def auto_save_seconds(self) -> float:
        return self.auto_save_ms / 1000.0

    @property
    def file_age_threshold_seconds(self) -> float:
        return self.file_age_threshold_ms / 1000.0


def validate_config(config: EngineConfig) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Extensions are normalised in place to lower case with a leading dot.

    Args:
        config: EngineConfig instance to validate.

    Raises:
        ValueError: If a delay is negative, no text extension is
            configured, or the conflict strategy is unknown.
    """
    for name in ("debounce_ms", "auto_save_ms", "file_age_threshold_ms"):
        value = getattr(config, name)
        if value < 0:
            raise ValueError(f"Invalid {name} '{value}': must be >= 0")

    normalised = []
    for ext in config.text_extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        normalised.append(ext)
    if not normalised:
        raise ValueError(
            "At least one text extension is required (e.g. .xml, .rels)"
        )
    config.text_extensions = tuple(normalised)

    if config.conflict_strategy not in CONFLICT_STRATEGIES:
        raise ValueError(
            f"Unknown conflict strategy '{config.conflict_strategy}'. "
            f"Valid strategies: {', '.join(CONFLICT_STRATEGIES)}"
        )

    if not config.temp_dir_prefix or os.sep in config.temp_dir_prefix:
        raise ValueError(
            f"Invalid temp_dir_prefix '{config.temp_dir_prefix}': "
            "must be a non-empty name without path separators"
        )

    if config.file_age_threshold_ms < config.debounce_ms:
        logger.warning(
            "file_age_threshold_ms (%d) is shorter than debounce_ms (%d); "
            "most edits will be skipped by the freshness check",
            config.file_age_threshold_ms,
            config.debounce_ms,
        )


def _get_int_env(key: str, low: int, high: int) -> int | None:
    """Return an int from env var, or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    debounce_ms: int | None = None,
    auto_save_ms: int | None = None,
    conflict_strategy: str | None = None,
    no_auto_save: bool = False,
    yaml_fallbacks: dict | None = None,
) -> EngineConfig:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        debounce_ms: Override the debounce window.
        auto_save_ms: Override the auto-save delay.
        conflict_strategy: Override the conflict strategy.
        no_auto_save: Disable automatic repackaging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``engine``
            section (plus ``indent`` from the ``formatter`` section).

    Returns:
        Validated EngineConfig instance.

    Raises:
        ValueError: If any value is out of range after checking all sources.
    """
    fb = yaml_fallbacks or {}
    defaults = EngineConfig()

    def pick_int(cli: int | None, env_key: str, fb_key: str, high: int) -> int:
        if cli is not None:
            return cli
        env_val = _get_int_env(env_key, 0, high)
        if env_val is not None:
            return env_val
        if fb_key in fb:
            return int(fb[fb_key])
        return getattr(defaults, fb_key)

    final_debounce = pick_int(
        debounce_ms, "OPENXML_DEBOUNCE_MS", "debounce_ms", 60_000
    )
    final_auto_save_ms = pick_int(
        auto_save_ms, "OPENXML_AUTO_SAVE_MS", "auto_save_ms", 3_600_000
    )
    final_age = pick_int(
        None, "OPENXML_FILE_AGE_MS", "file_age_threshold_ms", 86_400_000
    )

    if no_auto_save:
        final_auto_save = False
    else:
        env_auto_save = _get_bool_env("OPENXML_AUTO_SAVE")
        if env_auto_save is not None:
            final_auto_save = env_auto_save
        else:
            final_auto_save = bool(fb.get("auto_save", defaults.auto_save))

    final_strategy = (
        conflict_strategy
        or os.getenv("OPENXML_CONFLICT_STRATEGY")
        or fb.get("conflict_strategy")
        or defaults.conflict_strategy
    ).strip()

    indent_size = _get_int_env("OPENXML_INDENT_SIZE", 0, 16)
    if indent_size is not None:
        final_indent = " " * indent_size
    else:
        final_indent = fb.get("indent", defaults.indent)

    config = EngineConfig(
        debounce_ms=final_debounce,
        auto_save_ms=final_auto_save_ms,
        file_age_threshold_ms=final_age,
        auto_save=final_auto_save,
        text_extensions=tuple(
            fb.get("text_extensions", defaults.text_extensions)
        ),
        temp_dir_prefix=fb.get("temp_dir_prefix", defaults.temp_dir_prefix),
        conflict_strategy=final_strategy,
        indent=final_indent,
    )

    validate_config(config)

    return config
