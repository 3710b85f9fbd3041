"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import DispatchPriority, ServiceType


# ── Requests ──────────────────────────────────────────────────────────


class GeoPointIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(..., ge=-180, le=180, allow_inf_nan=False)


class CandidateIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    location: GeoPointIn
    rating: Optional[float] = Field(None, ge=0, le=5)
    completed_jobs: Optional[int] = Field(None, ge=0)


class ScoreRequest(BaseModel):
    pickup: GeoPointIn
    priority: DispatchPriority = DispatchPriority.NORMAL
    max_distance_km: float = Field(10.0, ge=0, allow_inf_nan=False)
    candidates: list[CandidateIn] = []


class JobCreateRequest(BaseModel):
    service_type: ServiceType = ServiceType.TAXI
    pickup_lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    pickup_lng: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    priority: DispatchPriority = DispatchPriority.NORMAL
    max_distance_km: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    order_ref: Optional[str] = Field(None, max_length=64)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double dispatch on retries.",
    )


class DriverActionRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)


class DriverLocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(..., ge=-180, le=180, allow_inf_nan=False)


class DriverStatusUpdate(BaseModel):
    is_online: Optional[bool] = None
    is_available: Optional[bool] = None


# ── Responses ─────────────────────────────────────────────────────────


class ScoredCandidateResponse(BaseModel):
    driver_id: str
    distance_km: float
    score: float
    eta_minutes: int


class ScoreResponse(BaseModel):
    ranked: list[ScoredCandidateResponse]
    best: Optional[ScoredCandidateResponse] = None


class JobResponse(BaseModel):
    id: int
    service_type: str
    order_ref: Optional[str] = None
    pickup_lat: float
    pickup_lng: float
    priority: str
    search_radius_km: float
    status: str
    driver_id: Optional[str] = None
    attempts: int
    offered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: str
    display_name: str
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    h3_cell: Optional[str] = None
    rating: Optional[float] = None
    completed_jobs: int
    service_types: str
    is_online: bool
    is_available: bool

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
