from __future__ import annotations

from geo_engine.models import GeoPoint

from matching_service.engine import ensure_valid_origin, ensure_valid_radius
from matching_service.errors import LocationRequired
from matching_service.store import MatchingStore

DEFAULT_RADIUS_KM = 10.0


class CategoryAggregator:
    def __init__(self, store: MatchingStore) -> None:
        self._store = store

    async def count_by_category(self, origin: GeoPoint | None, radius_km: float = DEFAULT_RADIUS_KM) -> dict[str, int]:
        """Count available providers in range per category, largest count first.

        Equal counts are ordered by category label.
        """
        if origin is None:
            raise LocationRequired("a location is required for category counts")
        ensure_valid_origin(origin)
        radius_meters = ensure_valid_radius(radius_km) * 1000
        counts = await self._store.count_by_category(origin, radius_meters)
        return {category: count for category, count in counts if count > 0}
