"""
Retry helper for remote operations (database queries, Redis publishes).

Each operation gets ``attempts`` tries (3 by default).  After a failure the
helper sleeps ``backoff_seconds`` and doubles it before the next try; the
last exception is re-raised once attempts run out.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from src.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """Await ``operation()`` until it succeeds or *attempts* are exhausted."""
    attempts = settings.retry_attempts if attempts is None else attempts
    delay = settings.retry_backoff_seconds if backoff_seconds is None else backoff_seconds
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, exc)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s -- retrying in %.2fs",
                label, attempt, attempts, exc, delay,
            )
            await asyncio.sleep(delay)
            delay *= 2

    raise AssertionError("unreachable")
