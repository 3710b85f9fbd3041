"""
Dispatch endpoints
==================

POST /api/v1/dispatch/score                  -- rank caller-supplied candidates
POST /api/v1/dispatch/jobs                   -- create a job and dispatch it (202)
GET  /api/v1/dispatch/jobs/{job_id}          -- job status and assigned driver
POST /api/v1/dispatch/jobs/{job_id}/accept   -- offered driver accepts
POST /api/v1/dispatch/jobs/{job_id}/reject   -- offered driver declines
POST /api/v1/dispatch/jobs/{job_id}/complete -- driver finishes the job
POST /api/v1/dispatch/jobs/{job_id}/cancel   -- customer cancels
POST /api/v1/dispatch/jobs/{job_id}/requeue  -- retry an UNASSIGNED job
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_event_publisher, get_locks
from src.api.middleware import limiter
from src.api.schemas import (
    DriverActionRequest,
    JobCreateRequest,
    JobResponse,
    ScoredCandidateResponse,
    ScoreRequest,
    ScoreResponse,
)
from src.config import settings
from src.domain.distance import InvalidInput
from src.domain.entities import (
    Candidate,
    DispatchRequest,
    GeoPoint,
    InvalidStateTransition,
    ScoredCandidate,
)
from src.domain.scoring import pick_best, score
from src.infrastructure.repositories import DispatchJobRepository, DriverRepository
from src.services.dispatch import DispatchService, JobNotFound, NotOfferedDriver

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def _scored_dto(s: ScoredCandidate) -> ScoredCandidateResponse:
    return ScoredCandidateResponse(
        driver_id=s.candidate.id,
        distance_km=round(s.distance_km, 3),
        score=round(s.score, 2),
        eta_minutes=s.eta_minutes,
    )


def _service(db: AsyncSession, publisher, locks) -> DispatchService:
    return DispatchService(
        DriverRepository(db),
        DispatchJobRepository(db),
        publisher,
        locks,
        defer_events=True,
    )


async def _run(db: AsyncSession, service: DispatchService, action):
    """
    Await a service action, translating domain errors to HTTP errors.

    On success the transaction is committed before any queued event is
    published, so a driver reacting to an offer always finds it stored.
    """
    try:
        result = await action
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except NotOfferedDriver as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except InvalidStateTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    await db.commit()
    await service.publish_pending()
    return result


@router.post(
    "/score",
    response_model=ScoreResponse,
    summary="Rank candidate drivers for a pickup",
    description=(
        "Pure scoring: nothing is persisted.  Candidates beyond "
        "``max_distance_km`` are dropped; ``best`` is null when none remain."
    ),
)
@limiter.limit("100/minute")
async def score_candidates(request: Request, body: ScoreRequest):
    dispatch_request = DispatchRequest(
        pickup=GeoPoint(body.pickup.lat, body.pickup.lng),
        priority=body.priority,
        max_distance_km=body.max_distance_km,
    )
    candidates = [
        Candidate(
            id=c.id,
            location=GeoPoint(c.location.lat, c.location.lng),
            rating=c.rating,
            completed_jobs=c.completed_jobs,
        )
        for c in body.candidates
    ]
    try:
        ranked = score(dispatch_request, candidates)
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    best = pick_best(ranked)
    return ScoreResponse(
        ranked=[_scored_dto(s) for s in ranked],
        best=_scored_dto(best) if best else None,
    )


@router.post(
    "/jobs",
    status_code=202,
    response_model=JobResponse,
    summary="Create a dispatch job",
    responses={202: {"description": "Job accepted; check status for the offer."}},
)
@limiter.limit("100/minute")
async def create_job(
    request: Request,
    body: JobCreateRequest,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    jobs = DispatchJobRepository(db)

    # ── Idempotency guard ─────────────────────────────────────────
    if body.idempotency_key:
        existing = await jobs.get_by_idempotency_key(body.idempotency_key)
        if existing:
            return existing

    job = await jobs.create_job(
        service_type=body.service_type,
        pickup_lat=body.pickup_lat,
        pickup_lng=body.pickup_lng,
        priority=body.priority,
        search_radius_km=body.max_distance_km or settings.default_max_distance_km,
        order_ref=body.order_ref,
        idempotency_key=body.idempotency_key,
    )
    service = DispatchService(
        DriverRepository(db), jobs, publisher, locks, defer_events=True
    )
    await _run(db, service, service.dispatch(job))
    return job


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job status and assigned driver",
)
@limiter.limit("100/minute")
async def get_job(
    request: Request,
    job_id: int,
    db: AsyncSession = Depends(get_db),
):
    job = await DispatchJobRepository(db).get_by_id(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Dispatch job not found")
    return job


@router.post("/jobs/{job_id}/accept", response_model=JobResponse, summary="Accept an offer")
@limiter.limit("100/minute")
async def accept_job(
    request: Request,
    job_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    service = _service(db, publisher, locks)
    return await _run(db, service, service.accept(job_id, body.driver_id))


@router.post(
    "/jobs/{job_id}/reject",
    response_model=JobResponse,
    summary="Decline an offer",
    description="The job is immediately re-dispatched to the next best driver.",
)
@limiter.limit("100/minute")
async def reject_job(
    request: Request,
    job_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    service = _service(db, publisher, locks)
    return await _run(db, service, service.reject(job_id, body.driver_id))


@router.post("/jobs/{job_id}/complete", response_model=JobResponse, summary="Complete a job")
@limiter.limit("100/minute")
async def complete_job(
    request: Request,
    job_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    service = _service(db, publisher, locks)
    return await _run(db, service, service.complete(job_id, body.driver_id))


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse, summary="Cancel a job")
@limiter.limit("100/minute")
async def cancel_job(
    request: Request,
    job_id: int,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    service = _service(db, publisher, locks)
    return await _run(db, service, service.cancel(job_id))


@router.post(
    "/jobs/{job_id}/requeue",
    response_model=JobResponse,
    summary="Retry an unassigned job from the default radius",
)
@limiter.limit("100/minute")
async def requeue_job(
    request: Request,
    job_id: int,
    db: AsyncSession = Depends(get_db),
    publisher=Depends(get_event_publisher),
    locks=Depends(get_locks),
):
    service = _service(db, publisher, locks)
    return await _run(db, service, service.requeue(job_id))
