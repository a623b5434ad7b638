from __future__ import annotations

import math

from geo_engine.models import GeoPoint, validate_coordinates

from matching_service.errors import InvalidLocation, LocationRequired
from matching_service.models import ProviderMatch
from matching_service.store import MatchingStore

DEFAULT_MAX_DISTANCE_METERS = 10_000.0


def ensure_valid_origin(origin: GeoPoint) -> GeoPoint:
    try:
        validate_coordinates(origin.lat, origin.lng)
    except (TypeError, ValueError) as exc:
        raise InvalidLocation(str(exc)) from exc
    return origin


def ensure_valid_radius(radius_meters: float) -> float:
    if isinstance(radius_meters, bool) or not math.isfinite(radius_meters) or radius_meters <= 0:
        raise InvalidLocation("search radius must be a positive number")
    return float(radius_meters)


def normalize_term(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class ProximityQueryEngine:
    """Nearest-first provider lookup around an origin point.

    Only available providers are returned. Category and text predicates are
    case-insensitive substring matches; text checks name, category and
    address. The radius is inclusive. Without an origin, a text query falls
    back to plain text matching with no distance ordering.
    """

    def __init__(self, store: MatchingStore, default_max_distance_meters: float = DEFAULT_MAX_DISTANCE_METERS) -> None:
        self._store = store
        self._default_max_distance_meters = ensure_valid_radius(default_max_distance_meters)

    async def find_near(
        self,
        origin: GeoPoint | None,
        max_distance_meters: float | None = None,
        category: str | None = None,
        text: str | None = None,
    ) -> list[ProviderMatch]:
        category = normalize_term(category)
        text = normalize_term(text)
        radius = (
            self._default_max_distance_meters
            if max_distance_meters is None
            else ensure_valid_radius(max_distance_meters)
        )

        if origin is None:
            if text is None:
                raise LocationRequired("a location is required when no search text is given")
            providers = await self._store.find_by_text(text)
            if category is not None:
                providers = [item for item in providers if item.matches_category(category)]
            return [ProviderMatch(provider=item) for item in providers]

        ensure_valid_origin(origin)
        hits = await self._store.find_near(origin, radius, category=category, text=text)
        return [ProviderMatch(provider=item, distance_meters=distance) for item, distance in hits]
