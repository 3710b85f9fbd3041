"""
Search-radius expansion policy.

When the scorer finds nobody at the current radius the caller widens the
search in fixed steps (5 km by default) up to a ceiling, mirroring the
"expand search" action offered to customers.
"""

from __future__ import annotations

from typing import Iterator


def expanding_radii(
    initial_km: float, step_km: float, maximum_km: float
) -> Iterator[float]:
    """
    Yield ``initial, initial + step, ...`` and finally ``maximum`` exactly.

    An *initial* radius at or above *maximum* yields *initial* alone.
    """
    if step_km <= 0:
        raise ValueError("step_km must be positive")

    radius = initial_km
    while radius < maximum_km:
        yield radius
        radius += step_km
    yield max(initial_km, maximum_km)
