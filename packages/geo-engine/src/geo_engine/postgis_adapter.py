from __future__ import annotations

from typing import Any, Awaitable, Callable

from geo_engine.models import GeoPoint

NEAREST_PROVIDERS_SQL = """
SELECT
    provider_id,
    ST_Distance(
        ST_SetSRID(ST_MakePoint(lng, lat), 4326)::geography,
        ST_SetSRID(ST_MakePoint($1, $2), 4326)::geography
    ) AS distance_meters
FROM matching.providers
WHERE availability
  AND lat IS NOT NULL
  AND lng IS NOT NULL
  AND ST_DWithin(
    ST_SetSRID(ST_MakePoint(lng, lat), 4326)::geography,
    ST_SetSRID(ST_MakePoint($1, $2), 4326)::geography,
    $3
  )
  AND ($4::text IS NULL OR category ILIKE $4)
  AND ($5::text IS NULL OR name ILIKE $5 OR category ILIKE $5 OR address ILIKE $5)
ORDER BY distance_meters ASC
"""

CATEGORY_COUNTS_SQL = """
SELECT category, COUNT(*) AS count
FROM matching.providers
WHERE availability
  AND lat IS NOT NULL
  AND lng IS NOT NULL
  AND ST_DWithin(
    ST_SetSRID(ST_MakePoint(lng, lat), 4326)::geography,
    ST_SetSRID(ST_MakePoint($1, $2), 4326)::geography,
    $3
  )
GROUP BY category
ORDER BY count DESC, category ASC
"""


def contains_pattern(value: str | None) -> str | None:
    """ILIKE pattern matching ``value`` as a literal substring."""
    if value is None:
        return None
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PostGISAdapter:
    def __init__(
        self,
        dsn: str,
        pool_factory: Callable[[str], Awaitable[Any]] | None = None,
    ) -> None:
        self._dsn = dsn
        self._pool = None
        self._pool_factory = pool_factory

    async def nearest_providers(
        self,
        center: GeoPoint,
        radius_meters: float,
        category: str | None = None,
        text: str | None = None,
    ) -> list[tuple[str, float]]:
        if radius_meters < 0:
            raise ValueError("radius_meters must be >= 0")
        pool = await self._get_pool()
        rows = await pool.fetch(
            NEAREST_PROVIDERS_SQL,
            center.lng,
            center.lat,
            float(radius_meters),
            contains_pattern(category),
            contains_pattern(text),
        )
        return [(str(row["provider_id"]), float(row["distance_meters"])) for row in rows]

    async def category_counts(self, center: GeoPoint, radius_meters: float) -> list[tuple[str, int]]:
        if radius_meters < 0:
            raise ValueError("radius_meters must be >= 0")
        pool = await self._get_pool()
        rows = await pool.fetch(CATEGORY_COUNTS_SQL, center.lng, center.lat, float(radius_meters))
        return [(str(row["category"]), int(row["count"])) for row in rows]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _get_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        self._pool = await self._create_pool()
        return self._pool

    async def _create_pool(self) -> Any:
        if self._pool_factory:
            return await self._pool_factory(self._dsn)
        try:
            import asyncpg
        except ImportError as exc:
            raise RuntimeError("asyncpg is required for postgis adapter") from exc
        return await asyncpg.create_pool(dsn=self._dsn, min_size=1, max_size=5)
