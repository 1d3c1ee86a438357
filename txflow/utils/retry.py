from __future__ import annotations

import asyncio

from ..contracts import RetryPolicy


def compute_backoff(attempt: int, policy: RetryPolicy) -> float:
    """Compute the capped exponential delay in milliseconds after ``attempt``."""
    delay = policy.initial_delay_ms * policy.backoff_factor ** attempt
    return min(delay, policy.max_delay_ms)


async def schedule_retry(delay_ms: float) -> None:
    """Sleep for ``delay_ms`` milliseconds before retrying."""
    await asyncio.sleep(delay_ms / 1000)
