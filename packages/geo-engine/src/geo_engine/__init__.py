"""Geo engine core package."""

from geo_engine.distance import central_angle, haversine_distance_meters, meters_to_radians
from geo_engine.geofence import bounding_box
from geo_engine.models import BoundingBox, GeoPoint, validate_coordinates
from geo_engine.postgis_adapter import PostGISAdapter
from geo_engine.proximity import rank_by_distance

__all__ = [
    "BoundingBox",
    "GeoPoint",
    "PostGISAdapter",
    "bounding_box",
    "central_angle",
    "haversine_distance_meters",
    "meters_to_radians",
    "rank_by_distance",
    "validate_coordinates",
]
