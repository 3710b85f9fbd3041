"""
Proximity Dispatch Scorer
=========================

Ranks candidate drivers for a pickup and designates the best match.

Score (0-100 scale)
-------------------
  score = 0.4 x proximity + 0.3 x rating + 0.2 x experience + 0.1 x priority

* **proximity**  = max(0, 100 - distance_km x 10)
* **rating**     = rating / 5 x 100            (rating defaults to 4.0)
* **experience** = min(100, completed_jobs x 2)
* **priority**   = 20 urgent, 10 high, 0 normal

ETA is a flat 2 minutes per km, rounded up.

Ordering
--------
Score descending, then distance ascending, then candidate id ascending, so
identical inputs always produce the same ranking.

Complexity
----------
Let N = candidates.  Scoring is O(N), sorting O(N log N).
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

from .distance import InvalidInput, haversine_km
from .entities import Candidate, DispatchRequest, ScoredCandidate
from .enums import PRIORITY_BONUS

PROXIMITY_WEIGHT = 0.4
RATING_WEIGHT = 0.3
EXPERIENCE_WEIGHT = 0.2
PRIORITY_WEIGHT = 0.1

MINUTES_PER_KM = 2


def proximity_component(distance_km: float) -> float:
    return max(0.0, 100.0 - distance_km * 10.0)


def rating_component(rating: float) -> float:
    return (rating / 5.0) * 100.0


def experience_component(completed_jobs: int) -> float:
    return float(min(100, completed_jobs * 2))


def eta_minutes(distance_km: float) -> int:
    return int(math.ceil(distance_km * MINUTES_PER_KM))


def _validate(request: DispatchRequest, candidates: list[Candidate]) -> None:
    """Validate every coordinate up front so no partial ranking is produced."""
    request.pickup.validate("pickup")
    radius = request.max_distance_km
    if not isinstance(radius, (int, float)) or not math.isfinite(radius) or radius < 0:
        raise InvalidInput(f"max_distance_km must be a finite number >= 0, got {radius}")
    for c in candidates:
        c.location.validate(f"candidate {c.id}")


def score(
    request: DispatchRequest, candidates: Iterable[Candidate]
) -> list[ScoredCandidate]:
    """
    Score, filter and rank *candidates* for *request*.

    Candidates farther than ``request.max_distance_km`` are dropped.  An
    empty result is a normal outcome meaning "no eligible candidate".
    Raises ``InvalidInput`` if the pickup or any candidate coordinate is
    invalid.
    """
    candidates = list(candidates)
    _validate(request, candidates)

    bonus = PRIORITY_BONUS[request.priority]
    pickup = request.pickup

    scored: list[ScoredCandidate] = []
    for c in candidates:
        distance = haversine_km(
            pickup.lat, pickup.lng, c.location.lat, c.location.lng
        )
        if distance > request.max_distance_km:
            continue

        total = (
            PROXIMITY_WEIGHT * proximity_component(distance)
            + RATING_WEIGHT * rating_component(c.effective_rating)
            + EXPERIENCE_WEIGHT * experience_component(c.effective_completed_jobs)
            + PRIORITY_WEIGHT * bonus
        )
        scored.append(
            ScoredCandidate(
                candidate=c,
                distance_km=distance,
                score=total,
                eta_minutes=eta_minutes(distance),
            )
        )

    scored.sort(key=lambda s: (-s.score, s.distance_km, s.candidate.id))
    return scored


def pick_best(scored: list[ScoredCandidate]) -> Optional[ScoredCandidate]:
    """Return the top-ranked candidate, or ``None`` when nobody is eligible."""
    return scored[0] if scored else None
