"""Conflict resolution policies.

A container changed on disk while local edits were unsaved; the resolver
decides what happens. Two implementations:

- ``FixedResolver``: Always answers the same ``Resolution`` (from config).
- ``CallbackResolver``: Delegates to a callable, typically a prompt shown
  to the user.

The ``create_resolver()`` factory maps config strategy strings to
resolver instances.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from openxml_editor.archive.models import ConflictInfo, Resolution

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        """Decide how to handle an external change.

        Called at most once per external change, with the session lock
        held. Must not call back into the engine for the same container.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class FixedResolver:
    """Always answer with one resolution."""

    def __init__(self, resolution: Resolution) -> None:
        self.resolution = resolution

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        logger.info(
            "External change to %s with %d unsaved entries, applying '%s'",
            conflict.original_path,
            len(conflict.modified),
            self.resolution.value,
        )
        return self.resolution


class CallbackResolver:
    """Ask a callable; string answers are coerced to ``Resolution``."""

    def __init__(
        self, callback: Callable[[ConflictInfo], Resolution | str]
    ) -> None:
        self.callback = callback

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        answer = self.callback(conflict)
        return Resolution(answer)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, Resolution] = {
    "reload": Resolution.RELOAD,
    "keep": Resolution.KEEP,
    "save-then-reload": Resolution.SAVE_THEN_RELOAD,
    "decline": Resolution.DECLINE,
}


def create_resolver(
    strategy: str = "keep",
    callback: Callable[[ConflictInfo], Resolution | str] | None = None,
) -> ConflictResolver:
    """Create a conflict resolver.

    Args:
        strategy: One of ``"reload"``, ``"keep"``, ``"save-then-reload"``,
            ``"decline"``. Ignored when *callback* is given.
        callback: Interactive decision function.

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If *strategy* is not recognised.
    """
    if callback is not None:
        return CallbackResolver(callback)

    resolution = _STRATEGY_MAP.get(strategy)
    if resolution is None:
        raise ValueError(
            f"Unknown conflict strategy '{strategy}'. "
            f"Valid strategies: {', '.join(sorted(_STRATEGY_MAP))}"
        )
    return FixedResolver(resolution)
