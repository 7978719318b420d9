"""Async utilities for bridging blocking engine calls to async MCP handlers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Archive extraction and repackaging do blocking file and ZIP I/O, so
    MCP tool handlers dispatch them through this helper.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        # In MCP tool handler:
        session = await run_sync(engine.open, path)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
