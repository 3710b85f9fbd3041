"""
H3 Candidate Pre-filter
=======================

Drivers are binned into H3 hexagons (resolution 7, ~5.16 km² by default)
whenever their location is written.  Before scoring, the repository only
loads drivers whose cell lies in the *cover* of the search disk, so the
exact Haversine filter in the scorer runs over a small candidate set.

Cover radius
------------
``grid_disk(origin, k)`` is itself a large hexagon.  Its closest boundary
points sit at the ring's edge midpoints, ``k x 1.5 x edge`` from the
origin centre, so a disk of radius ``r`` is contained once

  k = ceil(r / (1.5 x edge)) + 2

One extra ring absorbs the pickup sitting anywhere inside its own cell,
the other absorbs real hexagons being smaller than the average edge
length at this latitude.

Complexity: O(k²) cells.
"""

from __future__ import annotations

import math

import h3


def point_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def cover_ring_count(radius_km: float, resolution: int = 7) -> int:
    """Number of hexagon rings needed to cover *radius_km* around a cell."""
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    return math.ceil(radius_km / (1.5 * edge_km)) + 2


def covering_cells(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> set[str]:
    """Return every H3 cell that may hold a point within *radius_km*."""
    origin = point_h3_cell(lat, lng, resolution)
    return set(h3.grid_disk(origin, cover_ring_count(radius_km, resolution)))
