"""
Distance calculation using the Haversine formula.

Assumption
----------
Driver-to-pickup distance is great-circle (Haversine) distance, not road
distance.  The dispatch heuristic only needs a consistent ranking signal,
and the ETA derived from it is a coarse 2 min / km estimate anyway.

Coordinates are validated before use: a non-finite or out-of-range
latitude / longitude raises ``InvalidInput`` instead of propagating
``NaN`` into scores.

Complexity: O(1) per call.
"""

import math
import numbers

EARTH_RADIUS_KM = 6_371.0


class InvalidInput(ValueError):
    """Raised when a coordinate is non-finite or outside its valid range."""


def validate_coordinates(lat: float, lng: float, label: str = "point") -> None:
    """Raise ``InvalidInput`` unless *lat* / *lng* form a valid geo-point."""
    for value in (lat, lng):
        # bool is an int subclass, strings are never coerced
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidInput(
                f"{label}: coordinates must be numbers, got {value!r}"
            )
    lat_f, lng_f = float(lat), float(lng)

    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise InvalidInput(f"{label}: coordinates must be finite ({lat}, {lng})")
    if not -90.0 <= lat_f <= 90.0:
        raise InvalidInput(f"{label}: latitude {lat} outside [-90, 90]")
    if not -180.0 <= lng_f <= 180.0:
        raise InvalidInput(f"{label}: longitude {lng} outside [-180, 180]")


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    # Rounding can push ``a`` a hair above 1 for antipodal points
    a = min(1.0, a)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))
