from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from devkit.config import ServiceSettings, load_settings
from devkit.observability import configure_logging, configure_otel, configure_probe_access_log_filter
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from geo_engine.models import GeoPoint

from matching_service.dependencies import build_service
from matching_service.errors import MatchingError
from matching_service.models import Provider, Requester
from matching_service.schemas import (
    LocationUpdateRequest,
    ProviderLocationUpdateRequest,
    ProviderProfileUpdateRequest,
    ProviderUpsertRequest,
    RatingRequest,
    RequesterUpsertRequest,
)
from matching_service.service import MatchingService, provider_view


def success_response(data: object, meta: dict[str, object] | None = None) -> dict[str, object]:
    return {"success": True, "data": data, "meta": meta or {}}


def error_response(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message}}


async def resolve_requester(x_requester_id: str | None = Header(default=None)) -> str:
    if not x_requester_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "missing requester identity"},
        )
    return x_requester_id


async def resolve_provider(x_provider_id: str | None = Header(default=None)) -> str:
    if not x_provider_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "missing provider identity"},
        )
    return x_provider_id


def _optional_point(lat: float | None, lng: float | None) -> GeoPoint | None:
    # Both halves or neither; a partial pair is rejected.
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "INVALID_LOCATION", "message": "lat and lng must be provided together"},
        )
    return GeoPoint(lat=lat, lng=lng)


def create_app(service: MatchingService | None = None, settings: ServiceSettings | None = None) -> FastAPI:
    settings = settings or load_settings("matching-service")
    service = service or build_service(settings)
    max_radius_km = settings.MAX_SEARCH_RADIUS_KM

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await service.store.close()

    app = FastAPI(title="Matching Service", version="0.1.0", lifespan=lifespan)
    configure_logging(settings.LOG_LEVEL)
    configure_otel(service_name="matching-service")
    configure_probe_access_log_filter()

    @app.exception_handler(MatchingError)
    async def handle_matching_error(_: Request, exc: MatchingError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_response(exc.code, exc.message))

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})
        return JSONResponse(status_code=exc.status_code, content=error_response("HTTP_ERROR", str(exc.detail)))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(err["msg"] for err in exc.errors())
        return JSONResponse(status_code=422, content=error_response("VALIDATION_ERROR", message))

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict[str, object]:
        await service.store.ping()
        return success_response({"status": "ready"}, meta={})

    @app.get("/v1/providers")
    async def list_providers() -> dict[str, object]:
        items = await service.list_all_providers()
        return success_response(items, meta={"count": len(items)})

    @app.get("/v1/providers/nearby")
    async def nearby_providers(requester_id: str = Depends(resolve_requester)) -> dict[str, object]:
        items = await service.list_nearby_providers(requester_id)
        return success_response(items, meta={"count": len(items)})

    @app.get("/v1/providers/search")
    async def search_providers(
        query: str | None = Query(default=None, max_length=200),
        requester_id: str = Depends(resolve_requester),
    ) -> dict[str, object]:
        items = await service.search_providers(requester_id, query)
        return success_response(items, meta={"count": len(items)})

    @app.get("/v1/providers/category-counts")
    async def category_counts(
        radius_km: float = Query(default=10.0, gt=0),
        requester_id: str = Depends(resolve_requester),
    ) -> dict[str, object]:
        radius_km = min(radius_km, max_radius_km)
        items = await service.category_counts(requester_id, radius_km=radius_km)
        return success_response(items, meta={"radius_km": radius_km})

    @app.get("/v1/providers/by-category")
    async def providers_by_category(
        category: str = Query(..., min_length=1, max_length=128),
        radius_km: float = Query(default=10.0, gt=0),
        requester_id: str = Depends(resolve_requester),
    ) -> dict[str, object]:
        radius_km = min(radius_km, max_radius_km)
        items = await service.providers_by_category(requester_id, category, radius_km=radius_km)
        return success_response(items, meta={"count": len(items), "radius_km": radius_km})

    @app.get("/v1/providers/{provider_id}")
    async def get_provider(provider_id: str) -> dict[str, object]:
        return success_response(await service.get_provider_by_id(provider_id), meta={})

    @app.post("/v1/providers/{provider_id}/ratings")
    async def rate_provider(
        provider_id: str,
        body: RatingRequest,
        requester_id: str = Depends(resolve_requester),
    ) -> dict[str, object]:
        average = await service.submit_rating(requester_id, provider_id, body.rating)
        return success_response({"provider_id": provider_id, "rating": average}, meta={})

    @app.put("/v1/requesters/me/location")
    async def set_requester_location(
        body: LocationUpdateRequest,
        requester_id: str = Depends(resolve_requester),
    ) -> dict[str, object]:
        location = await service.set_requester_location(requester_id, body.lat, body.lng)
        return success_response({"location": location}, meta={})

    @app.get("/v1/requesters/me/location")
    async def get_requester_location(requester_id: str = Depends(resolve_requester)) -> dict[str, object]:
        return success_response({"location": await service.get_requester_location(requester_id)}, meta={})

    @app.put("/v1/providers/me/location")
    async def set_provider_location(
        body: ProviderLocationUpdateRequest,
        provider_id: str = Depends(resolve_provider),
    ) -> dict[str, object]:
        saved = await service.set_provider_location(provider_id, body.lat, body.lng, body.address)
        return success_response(saved, meta={})

    @app.get("/v1/requesters/me/profile")
    async def get_requester_profile(requester_id: str = Depends(resolve_requester)) -> dict[str, object]:
        return success_response(await service.get_requester_profile(requester_id), meta={})

    @app.get("/v1/providers/me/profile")
    async def get_provider_profile(provider_id: str = Depends(resolve_provider)) -> dict[str, object]:
        return success_response(await service.get_provider_profile(provider_id), meta={})

    @app.patch("/v1/providers/me/profile")
    async def update_provider_profile(
        body: ProviderProfileUpdateRequest,
        provider_id: str = Depends(resolve_provider),
    ) -> dict[str, object]:
        saved = await service.update_provider_profile(provider_id, body.model_dump(exclude_none=True))
        return success_response(saved, meta={})

    @app.post("/internal/requesters/upsert")
    async def upsert_requester(body: RequesterUpsertRequest) -> dict[str, object]:
        requester = Requester(
            requester_id=body.requester_id,
            name=body.name,
            email=body.email,
            profile_image=body.profile_image,
            location=_optional_point(body.lat, body.lng),
        )
        saved = await service.store.upsert_requester(requester)
        return success_response({"requester_id": saved.requester_id, "updated_at": saved.updated_at}, meta={})

    @app.post("/internal/providers/upsert")
    async def upsert_provider(body: ProviderUpsertRequest) -> dict[str, object]:
        provider = Provider(
            provider_id=body.provider_id,
            name=body.name,
            email=body.email,
            mobile=body.mobile,
            profile_image=body.profile_image,
            category=body.category,
            location=_optional_point(body.lat, body.lng),
            address=body.address,
            price=body.price,
            description=body.description,
            availability=body.availability,
        )
        saved = await service.store.upsert_provider(provider)
        return success_response(provider_view(saved), meta={})

    return app


app = create_app()
