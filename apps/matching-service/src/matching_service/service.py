from __future__ import annotations

import logging
from typing import Any

from devkit.observability import get_tracer
from geo_engine.models import GeoPoint

from matching_service.categories import DEFAULT_RADIUS_KM, CategoryAggregator
from matching_service.engine import ProximityQueryEngine, normalize_term
from matching_service.errors import InvalidCategory, InvalidLocation, ProviderNotFound, RequesterNotFound
from matching_service.models import Provider, ProviderMatch, Requester
from matching_service.ratings import RatingAggregator, display_rating
from matching_service.store import MatchingStore

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def provider_view(provider: Provider, distance_meters: float | None = None) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": provider.provider_id,
        "name": provider.name,
        "profile_image": provider.profile_image,
        "mobile": provider.mobile,
        "category": provider.category,
        "location": provider.location.to_geojson() if provider.location else None,
        "address": provider.address,
        "rating": display_rating(provider.rating),
        "price": provider.price,
        "description": provider.description,
        "availability": provider.availability,
    }
    if distance_meters is not None:
        view["distance_meters"] = round(distance_meters, 2)
    return view


def provider_profile_view(provider: Provider) -> dict[str, Any]:
    return {**provider_view(provider), "email": provider.email}


def _profile_changes(changes: dict[str, Any]) -> dict[str, Any]:
    # Missing and blank values leave the stored field as it is.
    kept: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            continue
        kept[key] = value
    return kept


def _match_views(matches: list[ProviderMatch]) -> list[dict[str, Any]]:
    return [provider_view(item.provider, item.distance_meters) for item in matches]


def _to_point(lat: float, lng: float) -> GeoPoint:
    try:
        return GeoPoint(lat=lat, lng=lng)
    except (TypeError, ValueError) as exc:
        raise InvalidLocation(str(exc)) from exc


class MatchingService:
    """Entry points used by the HTTP layer.

    Read operations never mutate state and never cache records between calls.
    """

    def __init__(
        self,
        store: MatchingStore,
        default_max_distance_meters: float = 10_000.0,
    ) -> None:
        self._store = store
        self._engine = ProximityQueryEngine(store, default_max_distance_meters=default_max_distance_meters)
        self._categories = CategoryAggregator(store)
        self._ratings = RatingAggregator(store)

    @property
    def store(self) -> MatchingStore:
        return self._store

    async def list_all_providers(self) -> list[dict[str, Any]]:
        providers = await self._store.list_available_providers()
        return [provider_view(item) for item in providers]

    async def list_nearby_providers(self, requester_id: str) -> list[dict[str, Any]]:
        requester = await self._require_requester(requester_id)
        with tracer.start_as_current_span("matching.list_nearby_providers"):
            matches = await self._engine.find_near(requester.location)
        return _match_views(matches)

    async def search_providers(self, requester_id: str, query: str | None) -> list[dict[str, Any]]:
        text = normalize_term(query)
        if text is None:
            return await self.list_nearby_providers(requester_id)
        requester = await self._require_requester(requester_id)
        with tracer.start_as_current_span("matching.search_providers") as span:
            span.set_attribute("matching.degraded", requester.location is None)
            matches = await self._engine.find_near(requester.location, text=text)
        if requester.location is None:
            logger.info(
                "search_without_location",
                extra={"component": "matching_service", "requester_id": requester_id, "count": len(matches)},
            )
        return _match_views(matches)

    async def category_counts(self, requester_id: str, radius_km: float = DEFAULT_RADIUS_KM) -> list[dict[str, Any]]:
        requester = await self._require_requester(requester_id)
        with tracer.start_as_current_span("matching.category_counts"):
            counts = await self._categories.count_by_category(requester.location, radius_km=radius_km)
        return [{"category": category, "count": count} for category, count in counts.items()]

    async def providers_by_category(
        self,
        requester_id: str,
        category: str | None,
        radius_km: float = DEFAULT_RADIUS_KM,
    ) -> list[dict[str, Any]]:
        term = normalize_term(category)
        if term is None:
            raise InvalidCategory("category is required")
        requester = await self._require_requester(requester_id)
        with tracer.start_as_current_span("matching.providers_by_category"):
            matches = await self._engine.find_near(
                requester.location,
                max_distance_meters=radius_km * 1000,
                category=term,
            )
        return _match_views(matches)

    async def get_provider_by_id(self, provider_id: str) -> dict[str, Any]:
        provider = await self._store.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(f"provider {provider_id} not found")
        return provider_view(provider)

    async def submit_rating(self, requester_id: str, provider_id: str, value: object) -> float:
        await self._require_requester(requester_id)
        return await self._ratings.submit_rating(provider_id, requester_id, value)

    async def set_requester_location(self, requester_id: str, lat: float, lng: float) -> dict[str, Any]:
        point = _to_point(lat, lng)
        requester = await self._store.set_requester_location(requester_id, point)
        if requester is None:
            raise RequesterNotFound(f"requester {requester_id} not found")
        return point.to_geojson()

    async def get_requester_location(self, requester_id: str) -> dict[str, float] | None:
        requester = await self._require_requester(requester_id)
        if requester.location is None:
            return None
        return {"lat": requester.location.lat, "lng": requester.location.lng}

    async def set_provider_location(self, provider_id: str, lat: float, lng: float, address: str) -> dict[str, Any]:
        point = _to_point(lat, lng)
        if not address or not address.strip():
            raise InvalidLocation("address is required")
        provider = await self._store.set_provider_location(provider_id, point, address.strip())
        if provider is None:
            raise ProviderNotFound(f"provider {provider_id} not found")
        return {"location": point.to_geojson(), "address": provider.address}

    async def get_requester_profile(self, requester_id: str) -> dict[str, Any]:
        requester = await self._require_requester(requester_id)
        return {
            "id": requester.requester_id,
            "name": requester.name,
            "email": requester.email,
            "profile_image": requester.profile_image,
        }

    async def get_provider_profile(self, provider_id: str) -> dict[str, Any]:
        provider = await self._store.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(f"provider {provider_id} not found")
        return provider_profile_view(provider)

    async def update_provider_profile(self, provider_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        applied = _profile_changes(changes)
        provider = await self._store.update_provider_profile(provider_id, applied)
        if provider is None:
            raise ProviderNotFound(f"provider {provider_id} not found")
        logger.info(
            "provider_profile_updated",
            extra={"component": "matching_service", "provider_id": provider_id, "fields": sorted(applied)},
        )
        return provider_profile_view(provider)

    async def _require_requester(self, requester_id: str) -> Requester:
        requester = await self._store.get_requester(requester_id)
        if requester is None:
            raise RequesterNotFound(f"requester {requester_id} not found")
        return requester
