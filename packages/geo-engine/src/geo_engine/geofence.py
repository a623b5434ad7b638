from __future__ import annotations

import math

from geo_engine.distance import meters_to_radians
from geo_engine.models import BoundingBox, GeoPoint


def bounding_box(center: GeoPoint, radius_meters: float) -> BoundingBox:
    """Smallest lat/lng box that contains every point within ``radius_meters``.

    Used as a cheap pre-filter before the exact haversine check; it may admit
    points outside the circle but never rejects one inside it.
    """
    if radius_meters < 0:
        raise ValueError("radius_meters must be >= 0")
    angular = meters_to_radians(radius_meters)
    min_lat = center.lat - math.degrees(angular)
    max_lat = center.lat + math.degrees(angular)
    if min_lat <= -90 or max_lat >= 90:
        # A pole falls inside the circle, every longitude qualifies.
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    delta_lng = math.degrees(math.asin(min(1.0, math.sin(angular) / math.cos(math.radians(center.lat)))))
    min_lng = center.lng - delta_lng
    max_lng = center.lng + delta_lng
    if min_lng < -180:
        min_lng += 360
    if max_lng > 180:
        max_lng -= 360
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)
