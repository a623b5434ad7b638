from __future__ import annotations

import math

from geo_engine.models import GeoPoint

EARTH_RADIUS_METERS = 6_371_000


def meters_to_radians(meters: float) -> float:
    return meters / EARTH_RADIUS_METERS


def central_angle(start: GeoPoint, end: GeoPoint) -> float:
    """Great-circle angle between two points, in radians."""
    start_lat = math.radians(start.lat)
    end_lat = math.radians(end.lat)
    half_dlat = math.radians(end.lat - start.lat) / 2
    half_dlng = math.radians(end.lng - start.lng) / 2
    h = math.sin(half_dlat) ** 2 + math.cos(start_lat) * math.cos(end_lat) * math.sin(half_dlng) ** 2
    # h can drift just above 1 for antipodal points.
    return 2 * math.asin(math.sqrt(min(1.0, h)))


def haversine_distance_meters(start: GeoPoint, end: GeoPoint) -> float:
    return EARTH_RADIUS_METERS * central_angle(start, end)
