"""
Background Re-dispatch Worker
=============================

Runs every ``REDISPATCH_INTERVAL_SECONDS`` (default 15 s).

Concurrency safety
------------------
* **Redis distributed lock** (``lock:redispatch``) ensures only one
  instance runs a cycle at a time across multiple API processes.
* Each offer claims ``lock:driver:<id>`` inside ``DispatchService`` so a
  cycle and a concurrent API dispatch never offer the same driver.
* Expired offers and PENDING jobs are read ``FOR UPDATE SKIP LOCKED``; a
  driver's accept on the same row waits for the cycle to commit.
* Events are published only after the cycle's commit.

Algorithm per cycle
-------------------
1. Expire offers older than ``OFFER_TIMEOUT_SECONDS`` back to PENDING.
2. Fetch all PENDING jobs (oldest first).
3. Dispatch each one; jobs nobody can take end up UNASSIGNED.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import LockFactory
from src.infrastructure.redis_client import get_redis
from src.infrastructure.events import RedisEventPublisher
from src.infrastructure.repositories import DispatchJobRepository, DriverRepository
from src.services.dispatch import DispatchService

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_redispatch_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Re-dispatch worker started (interval=%ds)",
        settings.redispatch_interval_seconds,
    )


async def stop_redispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Re-dispatch worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_redispatch_cycle()
        except Exception:
            logger.exception("Unhandled error in re-dispatch cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.redispatch_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def redispatch_pending(service: DispatchService, jobs, now: datetime | None = None) -> int:
    """
    Expire stale offers then dispatch every PENDING job.

    Returns the number of jobs offered to a driver.  A failure on one job
    is logged and does not stop the rest of the cycle.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.offer_timeout_seconds)

    for job in await jobs.get_expired_offers(cutoff):
        logger.info("Offer for job %s to driver %s expired", job.id, job.driver_id)
        try:
            await service.expire(job)
        except Exception:
            logger.exception("Failed to expire offer for job %s", job.id)

    offered = 0
    for job in await jobs.get_pending_jobs():
        try:
            if await service.dispatch(job) is not None:
                offered += 1
        except Exception:
            logger.exception("Failed to dispatch job %s", job.id)
    return offered


async def run_redispatch_cycle() -> int:
    """Execute one cycle.  Returns the number of jobs offered."""
    redis = await get_redis()
    locks = LockFactory(redis, ttl_seconds=settings.driver_lock_ttl_seconds)
    lock = locks("redispatch", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker -- skipping cycle")
        return 0

    offered = 0
    try:
        async with async_session_factory() as session:
            jobs = DispatchJobRepository(session)
            service = DispatchService(
                DriverRepository(session),
                jobs,
                RedisEventPublisher(redis),
                locks,
                defer_events=True,
            )
            offered = await redispatch_pending(service, jobs)
            await session.commit()
            await service.publish_pending()
            if offered:
                logger.info("Re-dispatch cycle: %d jobs offered", offered)
    except Exception:
        logger.exception("Error in re-dispatch cycle")
    finally:
        await lock.release()

    return offered
