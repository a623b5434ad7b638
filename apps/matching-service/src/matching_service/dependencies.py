from __future__ import annotations

import logging

from devkit.config import ServiceSettings, load_settings
from devkit.db import is_postgres_dsn, to_asyncpg_dsn
from geo_engine.postgis_adapter import PostGISAdapter

from matching_service.service import MatchingService
from matching_service.store import MatchingStore

logger = logging.getLogger(__name__)


def build_store(settings: ServiceSettings) -> MatchingStore:
    geo_index = None
    if settings.POSTGIS_ENABLED:
        if is_postgres_dsn(settings.DATABASE_URL):
            geo_index = PostGISAdapter(dsn=to_asyncpg_dsn(settings.DATABASE_URL))
        else:
            logger.warning(
                "postgis_disabled_without_postgres",
                extra={"component": "matching_service", "database_url_set": bool(settings.DATABASE_URL)},
            )
    return MatchingStore(database_url=settings.DATABASE_URL, geo_index=geo_index)


def build_service(settings: ServiceSettings | None = None) -> MatchingService:
    settings = settings or load_settings("matching-service")
    return MatchingService(
        build_store(settings),
        default_max_distance_meters=settings.DEFAULT_SEARCH_RADIUS_METERS,
    )
