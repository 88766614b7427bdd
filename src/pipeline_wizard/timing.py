"""Minimum visible-latency floor for remote calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


async def wait_at_least(awaitable: Awaitable[T], seconds: float) -> T:
    """Await ``awaitable`` but don't return before ``seconds`` have elapsed.

    Keeps a loading step on screen long enough not to flicker when the
    server answers quickly. Exceptions propagate as soon as they are raised.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await awaitable
    remaining = seconds - (loop.time() - started)
    if remaining > 0:
        await asyncio.sleep(remaining)
    return result
