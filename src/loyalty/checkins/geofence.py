"""Great-circle distance and geofence checks."""

from __future__ import annotations

import math

from loyalty.errors import InvalidCoordinatesError

EARTH_RADIUS_METERS = 6_371_000

# Absorbs float error from the sin/asin round trip at the exact boundary.
BOUNDARY_TOLERANCE_METERS = 1e-6


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two WGS84 points."""
    lat_from = math.radians(lat1)
    lat_to = math.radians(lat2)
    lat_delta = lat_to - lat_from
    lon_delta = math.radians(lon2) - math.radians(lon1)

    a = math.sin(lat_delta / 2) ** 2 + math.cos(lat_from) * math.cos(lat_to) * math.sin(lon_delta / 2) ** 2
    angle = 2 * math.asin(min(1.0, math.sqrt(a)))
    return angle * EARTH_RADIUS_METERS


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Reject non-finite or out-of-range coordinates."""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidCoordinatesError("Coordinates must be finite numbers")
    if not -90.0 <= latitude <= 90.0:
        raise InvalidCoordinatesError(f"Latitude {latitude} out of range [-90, 90]")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidCoordinatesError(f"Longitude {longitude} out of range [-180, 180]")


def within_radius(distance_meters: float, radius_meters: int) -> bool:
    """The boundary itself counts as inside."""
    return distance_meters <= radius_meters + BOUNDARY_TOLERANCE_METERS
