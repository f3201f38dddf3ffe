"""
async_utils.py - Async-to-sync bridging utilities.

The registry loader is synchronous but fans its per-step contract checks
out as coroutines; this module runs them from sync code.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Coroutine, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async_safely(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from synchronous code.

    Creates a fresh event loop when none is running. When called from inside
    a running loop (e.g. a sync loader invoked by async code), the coroutine
    runs on its own loop in a single worker thread instead.

    Args:
        coro: The coroutine to run.

    Returns:
        The result of the coroutine.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    logger.debug("run_async_safely called from async context; using worker thread")
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()
