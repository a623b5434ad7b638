from fastapi.testclient import TestClient

from matching_service.app import create_app
from matching_service.service import MatchingService
from matching_service.store import MatchingStore


def _client() -> TestClient:
    client = TestClient(create_app(service=MatchingService(MatchingStore())))
    client.post("/internal/requesters/upsert", json={"requester_id": "r-1", "name": "Nadia", "lat": 0.0, "lng": 0.0})
    client.post("/internal/requesters/upsert", json={"requester_id": "r-2", "name": "Tanvir"})
    for provider_id, name, category, lat in (
        ("p-near", "Rina Tutor", "tutor", 0.01),
        ("p-mid", "Karim Fixes", "plumber", 0.03),
        ("p-far", "Remote Tutor", "tutor", 0.5),
    ):
        client.post(
            "/internal/providers/upsert",
            json={"provider_id": provider_id, "name": name, "category": category, "lat": lat, "lng": 0.0, "price": 500},
        )
    return client


def _ids(response) -> list[str]:
    return [item["id"] for item in response.json()["data"]]


def test_health_probes() -> None:
    client = _client()
    assert client.get("/healthz").json()["data"] == {"status": "ok"}
    assert client.get("/readyz").status_code == 200


def test_internal_upsert_returns_public_view() -> None:
    client = _client()
    response = client.post(
        "/internal/providers/upsert",
        json={"provider_id": "p-new", "name": "New", "category": "cook", "email": "new@example.com", "lat": 1.0, "lng": 2.0},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["data"]["location"] == {"type": "Point", "coordinates": [2.0, 1.0]}
    assert body["data"]["rating"] == 0.0
    assert "email" not in body["data"]


def test_partial_coordinates_rejected_on_upsert() -> None:
    client = _client()
    response = client.post("/internal/providers/upsert", json={"provider_id": "p-x", "lat": 1.0})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_LOCATION"


def test_list_and_nearby_providers() -> None:
    client = _client()
    listed = client.get("/v1/providers")
    nearby = client.get("/v1/providers/nearby", headers={"X-Requester-Id": "r-1"})

    assert listed.json()["meta"]["count"] == 3
    assert _ids(nearby) == ["p-near", "p-mid"]
    assert nearby.json()["data"][0]["distance_meters"] > 0


def test_missing_identity_is_unauthorized() -> None:
    client = _client()
    response = client.get("/v1/providers/nearby")
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": {"code": "UNAUTHORIZED", "message": "missing requester identity"}}


def test_nearby_without_location_requires_location() -> None:
    client = _client()
    response = client.get("/v1/providers/nearby", headers={"X-Requester-Id": "r-2"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "LOCATION_REQUIRED"


def test_unknown_requester_is_not_found() -> None:
    client = _client()
    response = client.get("/v1/providers/nearby", headers={"X-Requester-Id": "ghost"})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "REQUESTER_NOT_FOUND"


def test_search_with_and_without_location() -> None:
    client = _client()
    located = client.get("/v1/providers/search?query=tutor", headers={"X-Requester-Id": "r-1"})
    degraded = client.get("/v1/providers/search?query=tutor", headers={"X-Requester-Id": "r-2"})

    assert _ids(located) == ["p-near"]
    assert sorted(_ids(degraded)) == ["p-far", "p-near"]


def test_category_counts_and_by_category() -> None:
    client = _client()
    headers = {"X-Requester-Id": "r-1"}
    counts = client.get("/v1/providers/category-counts", headers=headers)
    wide = client.get("/v1/providers/by-category?category=Tutor&radius_km=1000", headers=headers)
    blank = client.get("/v1/providers/by-category?category=%20", headers=headers)

    assert counts.json()["data"] == [{"category": "plumber", "count": 1}, {"category": "tutor", "count": 1}]
    assert _ids(wide) == ["p-near", "p-far"]
    assert wide.json()["meta"]["radius_km"] == 100.0
    assert blank.status_code == 422
    assert blank.json()["error"]["code"] == "INVALID_CATEGORY"


def test_provider_detail_and_not_found() -> None:
    client = _client()
    assert client.get("/v1/providers/p-mid").json()["data"]["name"] == "Karim Fixes"
    missing = client.get("/v1/providers/nope")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "PROVIDER_NOT_FOUND"


def test_rating_flow() -> None:
    client = _client()
    first = client.post("/v1/providers/p-near/ratings", json={"rating": 5}, headers={"X-Requester-Id": "r-1"})
    second = client.post("/v1/providers/p-near/ratings", json={"rating": 2}, headers={"X-Requester-Id": "r-2"})
    out_of_range = client.post("/v1/providers/p-near/ratings", json={"rating": 6}, headers={"X-Requester-Id": "r-1"})
    fractional = client.post("/v1/providers/p-near/ratings", json={"rating": 3.5}, headers={"X-Requester-Id": "r-1"})
    as_text = client.post("/v1/providers/p-near/ratings", json={"rating": "4"}, headers={"X-Requester-Id": "r-1"})
    missing = client.post("/v1/providers/p-near/ratings", json={}, headers={"X-Requester-Id": "r-1"})

    assert first.json()["data"] == {"provider_id": "p-near", "rating": 5.0}
    assert second.json()["data"]["rating"] == 3.5
    assert out_of_range.status_code == 422
    assert out_of_range.json()["error"]["code"] == "INVALID_RATING"
    assert fractional.status_code == 422
    assert fractional.json()["error"]["code"] == "INVALID_RATING"
    assert as_text.status_code == 422
    assert as_text.json()["error"]["code"] == "INVALID_RATING"
    assert missing.status_code == 422
    assert missing.json()["error"]["code"] == "VALIDATION_ERROR"
    assert client.get("/v1/providers/p-near").json()["data"]["rating"] == 3.5


def test_requester_location_endpoints() -> None:
    client = _client()
    headers = {"X-Requester-Id": "r-2"}
    assert client.get("/v1/requesters/me/location", headers=headers).json()["data"] == {"location": None}

    saved = client.put("/v1/requesters/me/location", json={"lat": 0.02, "lng": 0.0}, headers=headers)
    assert saved.json()["data"]["location"] == {"type": "Point", "coordinates": [0.0, 0.02]}
    assert client.get("/v1/requesters/me/location", headers=headers).json()["data"] == {"location": {"lat": 0.02, "lng": 0.0}}

    invalid = client.put("/v1/requesters/me/location", json={"lat": 91, "lng": 0.0}, headers=headers)
    assert invalid.status_code == 422


def test_provider_location_endpoint() -> None:
    client = _client()
    headers = {"X-Provider-Id": "p-far"}
    saved = client.put("/v1/providers/me/location", json={"lat": 0.005, "lng": 0.0, "address": "Banani"}, headers=headers)
    missing_address = client.put("/v1/providers/me/location", json={"lat": 0.005, "lng": 0.0}, headers=headers)
    nearby = client.get("/v1/providers/nearby", headers={"X-Requester-Id": "r-1"})

    assert saved.json()["data"]["address"] == "Banani"
    assert missing_address.status_code == 422
    assert _ids(nearby) == ["p-far", "p-near", "p-mid"]


def test_profile_endpoints() -> None:
    client = _client()
    client.post("/internal/requesters/upsert", json={"requester_id": "r-1", "name": "Nadia", "email": "nadia@example.com"})

    requester = client.get("/v1/requesters/me/profile", headers={"X-Requester-Id": "r-1"})
    provider = client.get("/v1/providers/me/profile", headers={"X-Provider-Id": "p-mid"})
    patched = client.patch(
        "/v1/providers/me/profile",
        json={"price": 650, "description": "Pipes and taps", "name": "  "},
        headers={"X-Provider-Id": "p-mid"},
    )
    negative = client.patch("/v1/providers/me/profile", json={"price": -1}, headers={"X-Provider-Id": "p-mid"})
    unknown = client.get("/v1/providers/me/profile", headers={"X-Provider-Id": "nope"})

    assert requester.json()["data"] == {"id": "r-1", "name": "Nadia", "email": "nadia@example.com", "profile_image": ""}
    assert "email" in provider.json()["data"]
    assert patched.json()["data"]["name"] == "Karim Fixes"
    assert patched.json()["data"]["price"] == 650
    assert patched.json()["data"]["description"] == "Pipes and taps"
    assert negative.status_code == 422
    assert unknown.status_code == 404
    assert client.get("/v1/providers/me/profile").status_code == 401
