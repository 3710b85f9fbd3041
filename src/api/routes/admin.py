"""
Admin / observability endpoints
===============================

GET /api/v1/admin/online-drivers -- drivers currently online, with position
GET /api/v1/admin/health         -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import limiter
from src.api.schemas import DriverResponse, HealthResponse
from src.infrastructure.repositories import DriverRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/online-drivers",
    response_model=list[DriverResponse],
    summary="List online drivers",
)
@limiter.limit("100/minute")
async def get_online_drivers(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await DriverRepository(db).get_online()


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
