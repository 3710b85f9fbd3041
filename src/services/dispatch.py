"""
Dispatch Service
================

Orchestrates one dispatch decision around the pure scorer:

1. Build a ``DispatchRequest`` from the job (pickup, priority, radius).
2. For each radius in the expansion sequence (``search.expanding_radii``):
   a. load online, available drivers offering the job's service type whose
      H3 cell lies in the cover of the search disk;
   b. ``score`` them and walk the ranking from ``pick_best`` down;
   c. claim the first driver whose lock can be taken and offer the job.
3. If nobody is found at the largest radius the job becomes UNASSIGNED.

Every outcome is published through the injected ``EventPublisher``; the
service itself never notifies anyone directly.  Request handlers and the
worker build it with ``defer_events=True``: events are queued and only
published by ``publish_pending`` once the transaction has committed.
Repository and publisher calls are remote, so they run through
``retry_async``.

Driver-side lifecycle
---------------------
* ``accept``   OFFERED  -> ACCEPTED
* ``reject``   OFFERED  -> PENDING, driver excluded, re-dispatched at once
* ``expire``   OFFERED  -> PENDING (offer timed out), same as reject
* ``complete`` ACCEPTED -> COMPLETED, driver freed, ``completed_jobs`` + 1
* ``cancel``   PENDING | OFFERED | ACCEPTED | UNASSIGNED -> CANCELLED
* ``requeue``  UNASSIGNED -> PENDING at the default radius, re-dispatched
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from src.config import Settings, settings as default_settings
from src.domain.cells import covering_cells
from src.domain.distance import InvalidInput
from src.domain.entities import (
    Candidate,
    DispatchRequest,
    GeoPoint,
    InvalidStateTransition,
    ScoredCandidate,
    ensure_transition,
)
from src.domain.enums import DispatchPriority, DispatchStatus, ServiceType
from src.domain.scoring import pick_best, score
from src.domain.search import expanding_radii
from src.infrastructure.events import EventPublisher, driver_channel, service_channel
from src.infrastructure.retry import retry_async

logger = logging.getLogger(__name__)


class JobNotFound(LookupError):
    """Raised when a dispatch job id does not exist."""


class NotOfferedDriver(PermissionError):
    """Raised when a driver acts on a job that is not theirs."""


def driver_to_candidate(driver: Any) -> Optional[Candidate]:
    """
    Map a driver row to a scorer ``Candidate``.

    Returns ``None`` for a driver with no fix or with a corrupt stored
    position, so one bad row cannot fail every dispatch around it.
    """
    if driver.current_lat is None or driver.current_lng is None:
        return None
    location = GeoPoint(driver.current_lat, driver.current_lng)
    try:
        location.validate(f"driver {driver.id}")
    except InvalidInput as exc:
        logger.warning("Skipping driver with bad stored position: %s", exc)
        return None
    return Candidate(
        id=str(driver.id),
        location=location,
        rating=driver.rating,
        completed_jobs=driver.completed_jobs,
    )


def _rejected(job: Any) -> list[str]:
    return [d for d in (job.rejected_drivers or "").split(",") if d]


class DispatchService:
    def __init__(
        self,
        drivers,
        jobs,
        publisher: EventPublisher,
        locks,
        config: Settings = default_settings,
        defer_events: bool = False,
    ):
        self.drivers = drivers
        self.jobs = jobs
        self.publisher = publisher
        self.locks = locks
        self.config = config
        # With defer_events the caller commits first, then publish_pending()
        self.defer_events = defer_events
        self.pending_events: list[tuple[str, dict[str, Any]]] = []

    # ── Dispatch ──────────────────────────────────────────────────────

    async def dispatch(self, job: Any) -> Optional[ScoredCandidate]:
        """Offer *job* to the best available driver, widening the radius as needed."""
        self._require(job, DispatchStatus.PENDING)

        request = DispatchRequest(
            pickup=GeoPoint(job.pickup_lat, job.pickup_lng),
            priority=DispatchPriority(job.priority),
            max_distance_km=job.search_radius_km,
        )
        request.pickup.validate("pickup")
        service_type = ServiceType(job.service_type)
        exclude = _rejected(job)
        job.attempts = (job.attempts or 0) + 1

        radius = job.search_radius_km
        for radius in expanding_radii(
            job.search_radius_km,
            self.config.radius_step_km,
            self.config.max_search_radius_km,
        ):
            cells = covering_cells(
                job.pickup_lat, job.pickup_lng, radius, self.config.h3_resolution
            )
            rows = await retry_async(
                lambda: self.drivers.get_available_candidates(
                    service_type, cells, exclude
                ),
                attempts=self.config.retry_attempts,
                backoff_seconds=self.config.retry_backoff_seconds,
                label="load candidates",
            )
            by_id = {str(r.id): r for r in rows}
            candidates = [c for c in map(driver_to_candidate, rows) if c is not None]
            ranked = score(replace(request, max_distance_km=radius), candidates)
            logger.debug(
                "Job %s: %d/%d candidates within %.1f km",
                job.id, len(ranked), len(candidates), radius,
            )

            best = pick_best(ranked)
            while best is not None:
                lock = self.locks.driver(best.candidate.id)
                if await lock.acquire():
                    try:
                        await self._offer(job, by_id[best.candidate.id], best, radius)
                    except Exception:
                        await lock.release()
                        raise
                    return best
                logger.info(
                    "Driver %s is being offered another job, trying next candidate",
                    best.candidate.id,
                )
                ranked = ranked[1:]
                best = pick_best(ranked)

        ensure_transition(job.status, DispatchStatus.UNASSIGNED)
        job.status = DispatchStatus.UNASSIGNED
        job.search_radius_km = radius
        await self.jobs.flush()
        logger.info("Job %s: no driver found within %.1f km", job.id, radius)
        await self._emit(job, "dispatch.unassigned", search_radius_km=radius)
        return None

    async def _offer(
        self, job: Any, driver: Any, choice: ScoredCandidate, radius: float
    ) -> None:
        ensure_transition(job.status, DispatchStatus.OFFERED)
        job.status = DispatchStatus.OFFERED
        job.driver_id = choice.candidate.id
        job.search_radius_km = radius
        job.offered_at = datetime.now(timezone.utc)
        driver.is_available = False
        await self.jobs.flush()

        logger.info(
            "Job %s offered to driver %s (%.2f km, eta %d min, score %.1f)",
            job.id, choice.candidate.id, choice.distance_km,
            choice.eta_minutes, choice.score,
        )
        await self._emit(
            job,
            "dispatch.offered",
            distance_km=round(choice.distance_km, 3),
            eta_minutes=choice.eta_minutes,
            score=round(choice.score, 2),
        )

    # ── Driver / customer actions ─────────────────────────────────────

    async def accept(self, job_id: int, driver_id: str) -> Any:
        job = await self._get(job_id)
        ensure_transition(job.status, DispatchStatus.ACCEPTED)
        self._check_driver(job, driver_id)
        job.status = DispatchStatus.ACCEPTED
        await self.jobs.flush()
        await self._emit(job, "dispatch.accepted")
        return job

    async def reject(self, job_id: int, driver_id: str) -> Any:
        """Driver turns the offer down; the job is re-dispatched without them."""
        job = await self._get(job_id)
        self._require(job, DispatchStatus.OFFERED)
        self._check_driver(job, driver_id)
        await self._withdraw_offer(job, "dispatch.rejected")
        await self.dispatch(job)
        return job

    async def expire(self, job: Any) -> Any:
        """Offer timed out; treated like a rejection by the silent driver."""
        self._require(job, DispatchStatus.OFFERED)
        await self._withdraw_offer(job, "dispatch.expired")
        return job

    async def complete(self, job_id: int, driver_id: str) -> Any:
        job = await self._get(job_id)
        ensure_transition(job.status, DispatchStatus.COMPLETED)
        self._check_driver(job, driver_id)
        job.status = DispatchStatus.COMPLETED
        driver = await self.drivers.get_by_id(driver_id)
        if driver is not None:
            driver.completed_jobs = (driver.completed_jobs or 0) + 1
            driver.is_available = True
        await self.jobs.flush()
        await self._emit(job, "dispatch.completed")
        return job

    async def cancel(self, job_id: int) -> Any:
        job = await self._get(job_id)
        ensure_transition(job.status, DispatchStatus.CANCELLED)
        job.status = DispatchStatus.CANCELLED
        if job.driver_id:
            await self._release_driver(job.driver_id)
        await self.jobs.flush()
        await self._emit(job, "dispatch.cancelled")
        return job

    async def requeue(self, job_id: int) -> Any:
        """Put an UNASSIGNED job back at the default radius and dispatch again."""
        job = await self._get(job_id)
        self._require(job, DispatchStatus.UNASSIGNED)
        job.status = DispatchStatus.PENDING
        job.search_radius_km = self.config.default_max_distance_km
        await self.dispatch(job)
        return job

    # ── Internals ─────────────────────────────────────────────────────

    async def _get(self, job_id: int) -> Any:
        job = await self.jobs.get_by_id_for_update(job_id)
        if job is None:
            raise JobNotFound(f"Dispatch job {job_id} not found")
        return job

    @staticmethod
    def _require(job: Any, status: DispatchStatus) -> None:
        current = DispatchStatus(job.status)
        if current != status:
            raise InvalidStateTransition(
                f"Job {job.id} is {current.value}, expected {status.value}"
            )

    @staticmethod
    def _check_driver(job: Any, driver_id: str) -> None:
        if job.driver_id != driver_id:
            raise NotOfferedDriver(
                f"Job {job.id} is not assigned to driver {driver_id}"
            )

    async def _withdraw_offer(self, job: Any, event: str) -> None:
        driver_id = job.driver_id
        await self._emit(job, event)
        job.status = DispatchStatus.PENDING
        job.driver_id = None
        job.offered_at = None
        if driver_id:
            job.rejected_drivers = ",".join(_rejected(job) + [driver_id])
            await self._release_driver(driver_id)
        await self.jobs.flush()

    async def _release_driver(self, driver_id: str) -> None:
        driver = await self.drivers.get_by_id(driver_id)
        if driver is not None:
            driver.is_available = True

    async def _emit(self, job: Any, event: str, **extra: Any) -> None:
        payload = {
            "event": event,
            "job_id": job.id,
            "service_type": ServiceType(job.service_type).value,
            "status": DispatchStatus(job.status).value,
            "driver_id": job.driver_id,
            "order_ref": job.order_ref,
            **extra,
        }
        channels = [
            service_channel(payload["service_type"], self.config.event_channel_prefix)
        ]
        if job.driver_id:
            channels.append(driver_channel(job.driver_id))
        for channel in channels:
            if self.defer_events:
                self.pending_events.append((channel, payload))
            else:
                await self._publish(channel, payload)

    async def publish_pending(self) -> int:
        """
        Publish events held back by ``defer_events``, in emission order.

        Call after the unit of work has committed, so subscribers never hear
        about a state the database does not hold yet.  Returns the count.
        """
        events, self.pending_events = self.pending_events, []
        for channel, payload in events:
            await self._publish(channel, payload)
        return len(events)

    def discard_pending(self) -> None:
        self.pending_events.clear()

    async def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        await retry_async(
            lambda: self.publisher.publish(channel, payload),
            attempts=self.config.retry_attempts,
            backoff_seconds=self.config.retry_backoff_seconds,
            label=f"publish {payload['event']}",
        )
