from __future__ import annotations

from dataclasses import dataclass, field

from devkit.timezone import now_utc_iso
from geo_engine.models import GeoPoint


@dataclass
class Requester:
    requester_id: str
    name: str = ""
    email: str = ""
    profile_image: str = ""
    location: GeoPoint | None = None
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)


@dataclass
class Provider:
    provider_id: str
    name: str = ""
    email: str = ""
    mobile: str = ""
    profile_image: str = ""
    category: str = ""
    location: GeoPoint | None = None
    address: str = ""
    # Derived from reviews; only the rating aggregator writes it.
    rating: float = 0.0
    price: float = 0.0
    description: str = ""
    availability: bool = True
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)

    def matches_text(self, needle: str) -> bool:
        q = needle.lower()
        return q in self.name.lower() or q in self.category.lower() or q in self.address.lower()

    def matches_category(self, needle: str) -> bool:
        return needle.lower() in self.category.lower()


@dataclass
class Review:
    provider_id: str
    requester_id: str
    rating: int
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)


@dataclass
class ProviderMatch:
    provider: Provider
    distance_meters: float | None = None
