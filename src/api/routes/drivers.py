"""
Driver endpoints
================

PATCH /api/v1/drivers/{driver_id}/location -- report a new position
PATCH /api/v1/drivers/{driver_id}/status   -- go online / offline, toggle availability

A driver holding an offered or accepted job cannot mark themselves
available; the job's own lifecycle frees them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import limiter
from src.api.schemas import DriverLocationUpdate, DriverResponse, DriverStatusUpdate
from src.config import settings
from src.domain.cells import point_h3_cell
from src.infrastructure.repositories import DispatchJobRepository, DriverRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["drivers"])


async def _get_driver(repo: DriverRepository, driver_id: str):
    driver = await repo.get_by_id(driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.patch(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Update a driver's position",
    description="Stores the point and re-bins the driver into its H3 cell.",
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: str,
    body: DriverLocationUpdate,
    db: AsyncSession = Depends(get_db),
):
    repo = DriverRepository(db)
    driver = await _get_driver(repo, driver_id)
    cell = point_h3_cell(body.lat, body.lng, settings.h3_resolution)
    return await repo.update_location(driver, body.lat, body.lng, cell)


@router.patch(
    "/{driver_id}/status",
    response_model=DriverResponse,
    summary="Set online / available flags",
    responses={409: {"description": "Driver still holds an active job."}},
)
@limiter.limit("100/minute")
async def update_status(
    request: Request,
    driver_id: str,
    body: DriverStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    driver = await _get_driver(DriverRepository(db), driver_id)
    if body.is_available and not driver.is_available:
        active = await DispatchJobRepository(db).get_active_for_driver(driver_id)
        if active is not None:
            raise HTTPException(
                status_code=409,
                detail=f"Driver {driver_id} still holds job {active.id}",
            )
    if body.is_online is not None:
        driver.is_online = body.is_online
    if body.is_available is not None:
        driver.is_available = body.is_available
    logger.info(
        "Driver %s online=%s available=%s",
        driver_id, driver.is_online, driver.is_available,
    )
    return driver
