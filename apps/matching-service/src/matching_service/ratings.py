from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
import logging

from matching_service.errors import InvalidRating, ProviderNotFound
from matching_service.store import MatchingStore

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def display_rating(value: float) -> float:
    """Round to one decimal place, halves away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def validate_rating(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRating("rating must be an integer")
    if value < MIN_RATING or value > MAX_RATING:
        raise InvalidRating(f"rating must be between {MIN_RATING} and {MAX_RATING}")
    return value


class RatingAggregator:
    """Keeps each provider's rating equal to the mean of its reviews.

    A requester holds at most one review per provider; resubmitting replaces
    the earlier value. Every submission recomputes the mean over all stored
    reviews instead of adjusting a running figure.
    """

    def __init__(self, store: MatchingStore) -> None:
        self._store = store

    async def submit_rating(self, provider_id: str, requester_id: str, value: object) -> float:
        rating = validate_rating(value)
        result = await self._store.upsert_review_and_recompute(provider_id, requester_id, rating)
        if result is None:
            raise ProviderNotFound(f"provider {provider_id} not found")
        mean, review_count = result
        logger.info(
            "rating_submitted",
            extra={
                "component": "rating_aggregator",
                "provider_id": provider_id,
                "review_count": review_count,
                "rating_avg": mean,
            },
        )
        return display_rating(mean)
