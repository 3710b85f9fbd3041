"""
Domain entities with business logic.

Patterns used
-------------
- **Value Objects** for the scorer's inputs / outputs (``GeoPoint``,
  ``Candidate``, ``DispatchRequest``, ``ScoredCandidate``).  They are
  frozen: a scoring call never mutates what the caller handed in.
- **State Pattern** via ``ensure_transition``: enforces valid dispatch
  lifecycle transitions (PENDING -> OFFERED -> ACCEPTED -> COMPLETED, with
  re-dispatch and cancellation branches).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .distance import validate_coordinates
from .enums import (
    DISPATCH_TRANSITIONS,
    DispatchPriority,
    DispatchStatus,
)

DEFAULT_RATING = 4.0
DEFAULT_COMPLETED_JOBS = 0
DEFAULT_MAX_DISTANCE_KM = 10.0


class InvalidStateTransition(Exception):
    """Raised when a dispatch status change violates the state machine."""


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def validate(self, label: str = "point") -> None:
        validate_coordinates(self.lat, self.lng, label)


@dataclass(frozen=True)
class Candidate:
    """A driver eligible for consideration in a dispatch decision."""

    id: str
    location: GeoPoint
    rating: Optional[float] = DEFAULT_RATING
    completed_jobs: Optional[int] = DEFAULT_COMPLETED_JOBS

    @property
    def effective_rating(self) -> float:
        return DEFAULT_RATING if self.rating is None else float(self.rating)

    @property
    def effective_completed_jobs(self) -> int:
        if self.completed_jobs is None:
            return DEFAULT_COMPLETED_JOBS
        return max(0, int(self.completed_jobs))


@dataclass(frozen=True)
class DispatchRequest:
    pickup: GeoPoint
    priority: DispatchPriority = DispatchPriority.NORMAL
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    distance_km: float
    score: float
    eta_minutes: int


# ── Lifecycle ─────────────────────────────────────────────────────────


def ensure_transition(current: DispatchStatus, new_status: DispatchStatus) -> None:
    """Raise ``InvalidStateTransition`` unless *current* -> *new_status* is legal."""
    allowed = DISPATCH_TRANSITIONS.get(DispatchStatus(current), set())
    if new_status not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition from {DispatchStatus(current).value} "
            f"to {new_status.value}"
        )
