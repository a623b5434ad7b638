from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class LocationUpdateRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ProviderLocationUpdateRequest(LocationUpdateRequest):
    address: str = Field(min_length=1, max_length=500)


class RatingRequest(BaseModel):
    # Passed through as sent; the rating aggregator rejects non-integers and out-of-range values.
    rating: Any


class RequesterUpsertRequest(BaseModel):
    requester_id: str = Field(min_length=1, max_length=64)
    name: str = ""
    email: str = ""
    profile_image: str = ""
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class ProviderUpsertRequest(BaseModel):
    provider_id: str = Field(min_length=1, max_length=64)
    name: str = ""
    email: str = ""
    mobile: str = ""
    profile_image: str = ""
    category: str = ""
    address: str = ""
    price: float = Field(default=0.0, ge=0)
    description: str = ""
    availability: bool = True
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class ProviderProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    mobile: str | None = Field(default=None, max_length=32)
    category: str | None = Field(default=None, max_length=128)
    price: float | None = Field(default=None, ge=0)
    description: str | None = None
