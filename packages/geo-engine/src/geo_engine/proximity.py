from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

from geo_engine.distance import haversine_distance_meters
from geo_engine.geofence import bounding_box
from geo_engine.models import GeoPoint

T = TypeVar("T")

# Absorbs float rounding so a point exactly on the radius survives the pre-filter.
BOX_PADDING_METERS = 1.0


def rank_by_distance(
    center: GeoPoint,
    items: Iterable[T],
    radius_meters: float,
    location_of: Callable[[T], GeoPoint | None],
) -> list[tuple[T, float]]:
    """Return ``(item, distance_meters)`` pairs within the radius, nearest first.

    The radius is inclusive. Items without a location are skipped. The sort is
    stable, so equal distances keep the input order.
    """
    if radius_meters < 0:
        raise ValueError("radius_meters must be >= 0")
    box = bounding_box(center, radius_meters + BOX_PADDING_METERS)
    ranked: list[tuple[T, float]] = []
    for item in items:
        point = location_of(item)
        if point is None or not box.contains(point):
            continue
        distance = haversine_distance_meters(center, point)
        if distance <= radius_meters:
            ranked.append((item, distance))
    ranked.sort(key=lambda pair: pair[1])
    return ranked
