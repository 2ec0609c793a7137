from __future__ import annotations

import math

from geoattend.schemas import Coordinates


EARTH_RADIUS_METERS = 6_371_000.0
GEOFENCE_RADIUS_METERS = 100.0
# Distances are compared at micrometre precision so float noise cannot flip the boundary.
_COMPARE_DIGITS = 6


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in meters (haversine)."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c


def is_within_geofence(
    point: Coordinates,
    center: Coordinates,
    radius_meters: float = GEOFENCE_RADIUS_METERS,
) -> bool:
    return round(distance_meters(point, center), _COMPARE_DIGITS) <= radius_meters
