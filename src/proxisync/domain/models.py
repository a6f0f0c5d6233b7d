"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- stored rows (`UserLocation`, `LocationHistoryEntry`, `Friendship`)
- collaborator records (`Profile`, `Event`)
- API inputs (`LocationReport`, `SharingToggle`)
- derived per-request views (`ProximityResult`, `EventResult`, `BoundingBox`)

Derived views are computed fresh for each request and never stored.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

PresenceStatus = Literal["online", "offline"]


class Coordinates(BaseModel):
    """A geographic point in decimal degrees (WGS84)."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class BoundingBox(BaseModel):
    north: float
    south: float
    east: float
    west: float


class UserLocation(BaseModel):
    """One row per user: last known fix plus the sharing (ghost mode) flag.

    Coordinates may be present while `is_sharing` is False; they must only leave the
    engine through `PrivacyGate`.
    """

    user_id: str
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    is_sharing: bool = True
    updated_at: datetime

    @model_validator(mode="after")
    def _validate_pair(self) -> "UserLocation":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must both be set or both be null")
        return self

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class LocationHistoryEntry(BaseModel):
    user_id: str
    latitude: float
    longitude: float
    location_name: str | None = None
    recorded_at: datetime


class FriendshipStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class Friendship(BaseModel):
    """Edge between two identities; the requester/addressee pair is canonical."""

    requester_id: str
    addressee_id: str
    status: FriendshipStatus = FriendshipStatus.pending

    @model_validator(mode="after")
    def _validate_distinct(self) -> "Friendship":
        if self.requester_id == self.addressee_id:
            raise ValueError("a user cannot befriend themselves")
        return self

    def other(self, user_id: str) -> str:
        return self.addressee_id if user_id == self.requester_id else self.requester_id


class Profile(BaseModel):
    user_id: str
    display_name: str | None = None
    avatar_url: str | None = None


class Event(BaseModel):
    """A catalog event whose venue is free text (resolved through the gazetteer)."""

    id: str
    title: str
    location_text: str = ""
    start_time: datetime
    is_public: bool = True
    category: str = ""


class LocationReport(BaseModel):
    """Client → store position report.

    `is_sharing` is optional: when omitted the stored ghost-mode flag is kept.
    """

    user_id: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    is_sharing: bool | None = None
    accuracy_m: float | None = Field(default=None, ge=0)
    updated_at: datetime | None = None

    @field_validator("user_id")
    @classmethod
    def _require_user_id(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("user_id must not be empty")
        return value.strip()


class SharingToggle(BaseModel):
    is_sharing: bool


class ProximityResult(BaseModel):
    """One entry of the nearby-friends view."""

    id: str
    name: str
    avatar_url: str | None = None
    coordinates: Coordinates | None = None
    distance_km: float | None = None
    status: PresenceStatus = "offline"
    location_label: str = "Location hidden"
    is_stale: bool = False


class EventResult(BaseModel):
    """One entry of the nearby-events view."""

    id: str
    title: str
    location_text: str
    coordinates: Coordinates | None = None
    distance_km: float | None = None
    start_time: datetime
    category: str = ""
