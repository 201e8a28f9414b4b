from __future__ import annotations

import asyncio


def linear_backoff(attempt: int, base_delay_ms: float) -> float:
    """Delay in milliseconds to wait after failed ``attempt`` (1-based)."""
    return base_delay_ms * max(attempt, 1)


async def schedule_retry(attempt: int, base_delay_ms: float) -> None:
    """Sleep for the linear backoff delay before the next attempt."""
    delay = linear_backoff(attempt, base_delay_ms)
    if delay > 0:
        await asyncio.sleep(delay / 1000)
