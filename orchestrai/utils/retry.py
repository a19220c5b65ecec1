from __future__ import annotations

import asyncio


async def wait_before_retry(delay: float, stop: asyncio.Event) -> bool:
    """Sleep for ``delay`` seconds unless ``stop`` is set first.

    Returns:
        ``True`` if ``stop`` was set, ``False`` if the full delay elapsed.
    """
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
