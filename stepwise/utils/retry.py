"""Backoff delays for redelivered job updates."""

from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base: float = 1.5, jitter: float = 0.5, max_delay: float = 60.0
) -> float:
    """Delay before retrying ``attempt``: ``base ** attempt`` capped at ``max_delay``, plus jitter."""
    if attempt < 1:
        raise ValueError(f"attempt must be at least 1, got {attempt}")
    return min(base ** attempt, max_delay) + random.uniform(0, jitter)


async def schedule_retry(
    attempt: int, base: float = 1.5, jitter: float = 0.5, max_delay: float = 60.0
) -> float:
    delay = compute_backoff(attempt, base=base, jitter=jitter, max_delay=max_delay)
    await asyncio.sleep(delay)
    return delay
