from __future__ import annotations

from collections import Counter
from dataclasses import replace
import logging
from typing import Any, Awaitable, Callable, TypeVar

from devkit.config import load_settings
from devkit.db import AsyncDatabaseManager, Base, create_all_tables, create_schema_if_not_exists, is_postgres_dsn
from devkit.timezone import now_utc_iso
from geo_engine.geofence import bounding_box
from geo_engine.models import GeoPoint
from geo_engine.postgis_adapter import PostGISAdapter
from geo_engine.proximity import BOX_PADDING_METERS, rank_by_distance
from sqlalchemy import Boolean, Float, Integer, String, Text, UniqueConstraint, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column

from matching_service.errors import StoreUnavailable
from matching_service.models import Provider, Requester, Review

T = TypeVar("T")
logger = logging.getLogger(__name__)

_SETTINGS = load_settings("matching-service")
_DB_SCHEMA = "matching" if is_postgres_dsn(_SETTINGS.DATABASE_URL) else None
_SCHEMA_ARGS: dict[str, Any] = {"schema": _DB_SCHEMA} if _DB_SCHEMA else {}

PROFILE_FIELDS = ("name", "mobile", "category", "price", "description")


class RequesterORM(Base):
    __tablename__ = "requesters"
    __table_args__ = _SCHEMA_ARGS

    requester_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    profile_image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class ProviderORM(Base):
    __tablename__ = "providers"
    __table_args__ = _SCHEMA_ARGS

    provider_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    mobile: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    profile_image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(128), index=True, nullable=False, default="")
    lat: Mapped[float | None] = mapped_column(Float, index=True, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    availability: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class ReviewORM(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("provider_id", "requester_id", name="uq_reviews_provider_requester"),
        _SCHEMA_ARGS,
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class MatchingStore:
    """Gateway to requester, provider and review state.

    Without a database URL the records live in process memory, which is meant
    for development and tests. With one, every call opens its own session and
    re-reads current rows. Proximity queries go to the PostGIS adapter when one
    is configured and otherwise use a bounding-box pre-filter followed by exact
    haversine ranking.
    """

    def __init__(self, database_url: str | None = None, geo_index: PostGISAdapter | None = None) -> None:
        self._requesters: dict[str, Requester] = {}
        self._providers: dict[str, Provider] = {}
        self._reviews: dict[tuple[str, str], Review] = {}
        self._db = AsyncDatabaseManager(database_url) if database_url else None
        self._geo_index = geo_index
        self._orm_ready = False

    async def close(self) -> None:
        if self._geo_index is not None:
            await self._geo_index.close()
        if self._db is not None:
            await self._db.disconnect()

    async def ping(self) -> None:
        if self._db is None:
            return

        async def _run(session):
            await session.execute(select(1))

        await self._run("ping", _run)

    async def upsert_requester(self, requester: Requester) -> Requester:
        if self._db is None:
            existing = self._requesters.get(requester.requester_id)
            saved = replace(
                requester,
                created_at=existing.created_at if existing else requester.created_at,
                updated_at=now_utc_iso(),
            )
            self._requesters[requester.requester_id] = saved
            return replace(saved)

        async def _run(session):
            row = await session.get(RequesterORM, requester.requester_id)
            if row is None:
                row = RequesterORM(requester_id=requester.requester_id, created_at=requester.created_at)
                session.add(row)
            row.name = requester.name
            row.email = requester.email
            row.profile_image = requester.profile_image
            row.lat, row.lng = _split_point(requester.location)
            row.updated_at = now_utc_iso()
            return self._to_requester(row)

        return await self._run("upsert_requester", _run)

    async def get_requester(self, requester_id: str) -> Requester | None:
        if self._db is None:
            item = self._requesters.get(requester_id)
            return replace(item) if item else None

        async def _run(session):
            row = await session.get(RequesterORM, requester_id)
            return self._to_requester(row) if row else None

        return await self._run("get_requester", _run)

    async def set_requester_location(self, requester_id: str, location: GeoPoint) -> Requester | None:
        if self._db is None:
            item = self._requesters.get(requester_id)
            if item is None:
                return None
            item.location = location
            item.updated_at = now_utc_iso()
            return replace(item)

        async def _run(session):
            row = await session.get(RequesterORM, requester_id)
            if row is None:
                return None
            row.lat, row.lng = location.lat, location.lng
            row.updated_at = now_utc_iso()
            return self._to_requester(row)

        return await self._run("set_requester_location", _run)

    async def upsert_provider(self, provider: Provider) -> Provider:
        if self._db is None:
            existing = self._providers.get(provider.provider_id)
            saved = replace(
                provider,
                rating=existing.rating if existing else 0.0,
                created_at=existing.created_at if existing else provider.created_at,
                updated_at=now_utc_iso(),
            )
            self._providers[provider.provider_id] = saved
            return replace(saved)

        async def _run(session):
            row = await session.get(ProviderORM, provider.provider_id)
            if row is None:
                row = ProviderORM(provider_id=provider.provider_id, rating=0.0, created_at=provider.created_at)
                session.add(row)
            row.name = provider.name
            row.email = provider.email
            row.mobile = provider.mobile
            row.profile_image = provider.profile_image
            row.category = provider.category
            row.lat, row.lng = _split_point(provider.location)
            row.address = provider.address
            row.price = provider.price
            row.description = provider.description
            row.availability = provider.availability
            row.updated_at = now_utc_iso()
            return self._to_provider(row)

        return await self._run("upsert_provider", _run)

    async def get_provider(self, provider_id: str) -> Provider | None:
        if self._db is None:
            item = self._providers.get(provider_id)
            return replace(item) if item else None

        async def _run(session):
            row = await session.get(ProviderORM, provider_id)
            return self._to_provider(row) if row else None

        return await self._run("get_provider", _run)

    async def set_provider_location(self, provider_id: str, location: GeoPoint, address: str) -> Provider | None:
        if self._db is None:
            item = self._providers.get(provider_id)
            if item is None:
                return None
            item.location = location
            item.address = address
            item.updated_at = now_utc_iso()
            return replace(item)

        async def _run(session):
            row = await session.get(ProviderORM, provider_id)
            if row is None:
                return None
            row.lat, row.lng = location.lat, location.lng
            row.address = address
            row.updated_at = now_utc_iso()
            return self._to_provider(row)

        return await self._run("set_provider_location", _run)

    async def update_provider_profile(self, provider_id: str, changes: dict[str, Any]) -> Provider | None:
        """Apply ``changes`` to the editable profile fields only; rating is never written here."""
        changes = {key: value for key, value in changes.items() if key in PROFILE_FIELDS}
        if self._db is None:
            item = self._providers.get(provider_id)
            if item is None:
                return None
            for key, value in changes.items():
                setattr(item, key, value)
            item.updated_at = now_utc_iso()
            return replace(item)

        async def _run(session):
            row = await session.get(ProviderORM, provider_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = now_utc_iso()
            return self._to_provider(row)

        return await self._run("update_provider_profile", _run)

    async def list_available_providers(self) -> list[Provider]:
        if self._db is None:
            return [replace(item) for item in self._providers.values() if item.availability]

        async def _run(session):
            stmt = select(ProviderORM).where(ProviderORM.availability.is_(True)).order_by(ProviderORM.provider_id)
            rows = (await session.scalars(stmt)).all()
            return [self._to_provider(row) for row in rows]

        return await self._run("list_available_providers", _run)

    async def find_by_text(self, text: str) -> list[Provider]:
        if self._db is None:
            return [replace(item) for item in self._providers.values() if item.availability and item.matches_text(text)]

        async def _run(session):
            stmt = (
                select(ProviderORM)
                .where(ProviderORM.availability.is_(True), _text_condition(text))
                .order_by(ProviderORM.provider_id)
            )
            rows = (await session.scalars(stmt)).all()
            return [self._to_provider(row) for row in rows]

        return await self._run("find_by_text", _run)

    async def find_near(
        self,
        center: GeoPoint,
        radius_meters: float,
        category: str | None = None,
        text: str | None = None,
    ) -> list[tuple[Provider, float]]:
        if self._geo_index is not None:
            hits = await self._geo_call(
                "find_near",
                lambda: self._geo_index.nearest_providers(center, radius_meters, category=category, text=text),
            )
            by_id = {item.provider_id: item for item in await self._get_providers([pid for pid, _ in hits])}
            return [(by_id[pid], distance) for pid, distance in hits if pid in by_id]

        candidates = await self._candidates_in_box(center, radius_meters, category=category, text=text)
        return rank_by_distance(center, candidates, radius_meters, lambda item: item.location)

    async def count_by_category(self, center: GeoPoint, radius_meters: float) -> list[tuple[str, int]]:
        if self._geo_index is not None:
            return await self._geo_call(
                "count_by_category",
                lambda: self._geo_index.category_counts(center, radius_meters),
            )

        candidates = await self._candidates_in_box(center, radius_meters)
        ranked = rank_by_distance(center, candidates, radius_meters, lambda item: item.location)
        counts = Counter(item.category for item, _ in ranked)
        return sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))

    async def upsert_review_and_recompute(
        self,
        provider_id: str,
        requester_id: str,
        rating: int,
    ) -> tuple[float, int] | None:
        """Store the pair's review and rewrite the provider mean over all its reviews.

        Returns ``(mean, review_count)`` or ``None`` if the provider is unknown.
        The SQL path locks the provider row first, so concurrent submissions
        for one provider are applied one after another.
        """
        if self._db is None:
            # No await below: the read-modify-write completes within one event loop step.
            provider = self._providers.get(provider_id)
            if provider is None:
                return None
            now = now_utc_iso()
            review = self._reviews.get((provider_id, requester_id))
            if review is None:
                self._reviews[(provider_id, requester_id)] = Review(provider_id, requester_id, rating)
            else:
                review.rating = rating
                review.updated_at = now
            ratings = [item.rating for item in self._reviews.values() if item.provider_id == provider_id]
            provider.rating = sum(ratings) / len(ratings)
            provider.updated_at = now
            return provider.rating, len(ratings)

        async def _run(session):
            stmt = select(ProviderORM).where(ProviderORM.provider_id == provider_id).with_for_update()
            provider = (await session.scalars(stmt)).first()
            if provider is None:
                return None
            now = now_utc_iso()
            review = (
                await session.scalars(
                    select(ReviewORM).where(
                        ReviewORM.provider_id == provider_id,
                        ReviewORM.requester_id == requester_id,
                    )
                )
            ).first()
            if review is None:
                session.add(
                    ReviewORM(
                        provider_id=provider_id,
                        requester_id=requester_id,
                        rating=rating,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                review.rating = rating
                review.updated_at = now
            await session.flush()
            mean, count = (
                await session.execute(
                    select(func.avg(ReviewORM.rating), func.count()).where(ReviewORM.provider_id == provider_id)
                )
            ).one()
            provider.rating = float(mean)
            provider.updated_at = now
            return float(mean), int(count)

        return await self._run("upsert_review_and_recompute", _run, retry_on_conflict=True)

    async def list_reviews(self, provider_id: str) -> list[Review]:
        if self._db is None:
            return [replace(item) for item in self._reviews.values() if item.provider_id == provider_id]

        async def _run(session):
            stmt = select(ReviewORM).where(ReviewORM.provider_id == provider_id).order_by(ReviewORM.id)
            rows = (await session.scalars(stmt)).all()
            return [
                Review(
                    provider_id=row.provider_id,
                    requester_id=row.requester_id,
                    rating=row.rating,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                )
                for row in rows
            ]

        return await self._run("list_reviews", _run)

    async def _get_providers(self, provider_ids: list[str]) -> list[Provider]:
        if not provider_ids:
            return []
        if self._db is None:
            return [replace(self._providers[pid]) for pid in provider_ids if pid in self._providers]

        async def _run(session):
            rows = (await session.scalars(select(ProviderORM).where(ProviderORM.provider_id.in_(provider_ids)))).all()
            return [self._to_provider(row) for row in rows]

        return await self._run("get_providers", _run)

    async def _candidates_in_box(
        self,
        center: GeoPoint,
        radius_meters: float,
        category: str | None = None,
        text: str | None = None,
    ) -> list[Provider]:
        box = bounding_box(center, radius_meters + BOX_PADDING_METERS)
        if self._db is None:
            return [
                replace(item)
                for item in self._providers.values()
                if item.availability
                and item.location is not None
                and box.contains(item.location)
                and (category is None or item.matches_category(category))
                and (text is None or item.matches_text(text))
            ]

        async def _run(session):
            lng_condition = (
                or_(ProviderORM.lng >= box.min_lng, ProviderORM.lng <= box.max_lng)
                if box.crosses_antimeridian
                else ProviderORM.lng.between(box.min_lng, box.max_lng)
            )
            stmt = select(ProviderORM).where(
                ProviderORM.availability.is_(True),
                ProviderORM.lat.is_not(None),
                ProviderORM.lng.is_not(None),
                ProviderORM.lat.between(box.min_lat, box.max_lat),
                lng_condition,
            )
            if category is not None:
                stmt = stmt.where(func.lower(ProviderORM.category).contains(category.lower(), autoescape=True))
            if text is not None:
                stmt = stmt.where(_text_condition(text))
            rows = (await session.scalars(stmt.order_by(ProviderORM.provider_id))).all()
            return [self._to_provider(row) for row in rows]

        return await self._run("candidates_in_box", _run)

    async def _run(
        self,
        operation: str,
        fn: Callable[[Any], Awaitable[T]],
        *,
        retry_on_conflict: bool = False,
    ) -> T:
        assert self._db is not None
        attempts = 2 if retry_on_conflict else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._ensure_orm_ready()
                return await self._db.run_with_session(fn)
            except IntegrityError as exc:
                if attempt < attempts:
                    logger.info("store_conflict_retry", extra={"component": "matching_store", "operation": operation})
                    continue
                logger.exception("store_operation_failed", extra={"component": "matching_store", "operation": operation})
                raise StoreUnavailable(f"{operation} failed") from exc
            except (SQLAlchemyError, OSError) as exc:
                logger.exception("store_operation_failed", extra={"component": "matching_store", "operation": operation})
                raise StoreUnavailable(f"{operation} failed") from exc

    async def _geo_call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except ValueError:
            raise
        except Exception as exc:
            logger.exception("geo_query_failed", extra={"component": "matching_store", "operation": operation})
            raise StoreUnavailable(f"{operation} failed") from exc

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return

        await self._db.connect()
        if _DB_SCHEMA:
            await create_schema_if_not_exists(self._db.engine, _DB_SCHEMA)
        await create_all_tables(self._db.engine, Base.metadata)
        self._orm_ready = True

    def _to_requester(self, row: RequesterORM) -> Requester:
        return Requester(
            requester_id=row.requester_id,
            name=row.name,
            email=row.email,
            profile_image=row.profile_image,
            location=_join_point(row.lat, row.lng),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_provider(self, row: ProviderORM) -> Provider:
        return Provider(
            provider_id=row.provider_id,
            name=row.name,
            email=row.email,
            mobile=row.mobile,
            profile_image=row.profile_image,
            category=row.category,
            location=_join_point(row.lat, row.lng),
            address=row.address,
            rating=row.rating,
            price=row.price,
            description=row.description,
            availability=row.availability,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _text_condition(text: str):
    q = text.lower()
    return or_(
        func.lower(ProviderORM.name).contains(q, autoescape=True),
        func.lower(ProviderORM.category).contains(q, autoescape=True),
        func.lower(ProviderORM.address).contains(q, autoescape=True),
    )


def _split_point(point: GeoPoint | None) -> tuple[float | None, float | None]:
    if point is None:
        return None, None
    return point.lat, point.lng


def _join_point(lat: float | None, lng: float | None) -> GeoPoint | None:
    if lat is None or lng is None:
        return None
    return GeoPoint(lat=lat, lng=lng)
