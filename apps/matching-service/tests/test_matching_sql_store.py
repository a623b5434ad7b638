from __future__ import annotations

import pytest

from geo_engine.models import GeoPoint
from matching_service.engine import ProximityQueryEngine
from matching_service.models import Provider, Requester
from matching_service.ratings import RatingAggregator
from matching_service.store import MatchingStore


async def _sql_store(tmp_path) -> MatchingStore:
    store = MatchingStore(database_url=f"sqlite+aiosqlite:///{tmp_path / 'matching.db'}")
    await store.upsert_provider(
        Provider("p-near", name="Near Tutor", category="Tutor", address="Road 2", location=GeoPoint(lat=0.01, lng=0.0))
    )
    await store.upsert_provider(
        Provider("p-far", name="Far Plumber", category="plumber", address="100%_Road", location=GeoPoint(lat=0.05, lng=0.0))
    )
    await store.upsert_provider(
        Provider("p-off", name="Off Tutor", category="tutor", availability=False, location=GeoPoint(lat=0.0, lng=0.0))
    )
    await store.upsert_provider(Provider("p-unset", name="Unset Tutor", category="tutor"))
    await store.upsert_provider(Provider("p-remote", name="Remote Tutor", category="tutor", location=GeoPoint(lat=2.0, lng=2.0)))
    return store


@pytest.mark.asyncio
async def test_sql_store_round_trips_records(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    try:
        await store.upsert_requester(Requester("r-1", name="Nadia"))
        requester = await store.get_requester("r-1")
        assert requester is not None
        assert requester.location is None

        moved = await store.set_requester_location("r-1", GeoPoint(lat=0.0, lng=0.0))
        assert moved is not None
        assert moved.location == GeoPoint(lat=0.0, lng=0.0)
        assert await store.set_requester_location("ghost", GeoPoint(lat=0.0, lng=0.0)) is None

        provider = await store.get_provider("p-unset")
        assert provider is not None
        assert provider.location is None
        assert provider.rating == 0.0
        assert await store.get_provider("ghost") is None
        await store.ping()
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_proximity_ordering_and_filters(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    engine = ProximityQueryEngine(store)
    try:
        matches = await engine.find_near(GeoPoint(lat=0.0, lng=0.0))
        tutors = await engine.find_near(GeoPoint(lat=0.0, lng=0.0), category="TUTOR")
        escaped = await engine.find_near(GeoPoint(lat=0.0, lng=0.0), text="100%_")

        assert [item.provider.provider_id for item in matches] == ["p-near", "p-far"]
        assert matches[0].distance_meters == pytest.approx(1_111.95, abs=1.0)
        assert [item.provider.provider_id for item in tutors] == ["p-near"]
        assert [item.provider.provider_id for item in escaped] == ["p-far"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_text_search_and_listing(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    try:
        found = await store.find_by_text("tutor")
        available = await store.list_available_providers()

        assert [item.provider_id for item in found] == ["p-near", "p-remote", "p-unset"]
        assert [item.provider_id for item in available] == ["p-far", "p-near", "p-remote", "p-unset"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_counts_by_category(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    try:
        await store.upsert_provider(
            Provider("p-near-2", name="Second Plumber", category="plumber", location=GeoPoint(lat=0.0, lng=0.02))
        )
        counts = await store.count_by_category(GeoPoint(lat=0.0, lng=0.0), 10_000.0)

        assert counts == [("plumber", 2), ("Tutor", 1)]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_ratings_recompute_mean(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    aggregator = RatingAggregator(store)
    try:
        assert await aggregator.submit_rating("p-near", "r-1", 4) == 4.0
        assert await aggregator.submit_rating("p-near", "r-2", 2) == 3.0
        assert await aggregator.submit_rating("p-near", "r-1", 2) == 2.0

        reviews = await store.list_reviews("p-near")
        provider = await store.get_provider("p-near")

        assert sorted((item.requester_id, item.rating) for item in reviews) == [("r-1", 2), ("r-2", 2)]
        assert provider is not None
        assert provider.rating == 2.0
        assert await store.upsert_review_and_recompute("ghost", "r-1", 3) is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_upsert_keeps_existing_rating(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    try:
        await store.upsert_review_and_recompute("p-near", "r-1", 5)
        await store.upsert_provider(
            Provider("p-near", name="Renamed", category="Tutor", rating=1.0, availability=False, location=GeoPoint(lat=0.01, lng=0.0))
        )

        provider = await store.get_provider("p-near")
        nearby = await store.find_near(GeoPoint(lat=0.0, lng=0.0), 10_000.0)

        assert provider is not None
        assert provider.name == "Renamed"
        assert provider.rating == 5.0
        assert [item.provider_id for item, _ in nearby] == ["p-far"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sql_store_profile_update_leaves_rating_alone(tmp_path) -> None:
    store = await _sql_store(tmp_path)
    try:
        await store.upsert_review_and_recompute("p-near", "r-1", 3)
        updated = await store.update_provider_profile(
            "p-near", {"description": "Maths and physics", "price": 700.0, "rating": 5.0, "address": "elsewhere"}
        )

        assert updated is not None
        assert updated.description == "Maths and physics"
        assert updated.price == 700.0
        assert updated.rating == 3.0
        assert updated.address == "Road 2"
        assert await store.update_provider_profile("ghost", {"name": "x"}) is None
    finally:
        await store.close()
