from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────
# Shared
# ──────────────────────────────────────────────────────────────

class Coordinate(BaseModel):
    lat: float
    lng: float


class SignImage(BaseModel):
    format: str                     # Pillow format name ("PNG", "GIF", ...)
    media_type: str
    width: int
    height: int
    content: bytes


# ──────────────────────────────────────────────────────────────
# Incidents
# ──────────────────────────────────────────────────────────────

class Incident(BaseModel):
    id: str = Field(frozen=True)
    time: datetime
    summary: str
    location: Optional[Coordinate] = None
    image_url: Optional[str] = None
    # absent -> present only; filled in by the image cache
    cached_image: Optional[SignImage] = Field(default=None, exclude=True)

    @field_validator("time")
    @classmethod
    def _utc_if_naive(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class IncidentView(BaseModel):
    id: str
    time: datetime
    summary: str
    location: Optional[Coordinate] = None
    image_url: Optional[str] = None
    has_image: bool = False

    @classmethod
    def of(cls, it: Incident) -> "IncidentView":
        return cls(
            id=it.id,
            time=it.time,
            summary=it.summary,
            location=it.location,
            image_url=it.image_url,
            has_image=it.cached_image is not None,
        )


# ──────────────────────────────────────────────────────────────
# Sorting policy
# ──────────────────────────────────────────────────────────────

class ByDate(BaseModel):
    kind: Literal["date"] = "date"


class ByLocation(BaseModel):
    kind: Literal["location"] = "location"
    # None = resolve the current position through the LocationService
    reference: Optional[Coordinate] = None


SortingPolicy = Annotated[Union[ByDate, ByLocation], Field(discriminator="kind")]


# ──────────────────────────────────────────────────────────────
# Fetch state
# ──────────────────────────────────────────────────────────────

FetchPhase = Literal["idle", "fetching"]
FetchOutcome = Literal["success", "failure"]


class FetchState(BaseModel):
    phase: FetchPhase = "idle"
    generation: int = 0
    last_outcome: Optional[FetchOutcome] = None
    last_error: Optional[str] = None
    incident_count: int = 0
    updated_at: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Controller events (presentation layer)
# ──────────────────────────────────────────────────────────────

AuthorizationStatus = Literal["not_determined", "denied", "restricted", "authorized"]


class FetchStarted(BaseModel):
    event: Literal["fetch_started"] = "fetch_started"
    at: str
    generation: int


class FetchSucceeded(BaseModel):
    event: Literal["fetch_succeeded"] = "fetch_succeeded"
    at: str
    generation: int
    count: int


class FetchFailed(BaseModel):
    event: Literal["fetch_failed"] = "fetch_failed"
    at: str
    generation: int
    message: str


class IncidentsReordered(BaseModel):
    event: Literal["incidents_reordered"] = "incidents_reordered"
    at: str
    policy: SortingPolicy
    ids: List[str] = Field(default_factory=list)


class ImageAvailable(BaseModel):
    event: Literal["image_available"] = "image_available"
    at: str
    incident_id: str


class LocationUnavailable(BaseModel):
    event: Literal["location_unavailable"] = "location_unavailable"
    at: str
    status: AuthorizationStatus
    message: Optional[str] = None


ControllerEvent = Annotated[
    Union[FetchStarted, FetchSucceeded, FetchFailed, IncidentsReordered, ImageAvailable, LocationUnavailable],
    Field(discriminator="event"),
]


# ──────────────────────────────────────────────────────────────
# HTTP request / response bodies
# ──────────────────────────────────────────────────────────────

class IncidentsResponse(BaseModel):
    state: FetchState
    policy: SortingPolicy
    items: List[IncidentView] = Field(default_factory=list)


class ImagesRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class ImagesResponse(BaseModel):
    accepted: int
    delivered: List[str] = Field(default_factory=list)


class EventRecord(BaseModel):
    seq: int
    data: ControllerEvent


class EventsResponse(BaseModel):
    last_seq: int
    items: List[EventRecord] = Field(default_factory=list)


class LocationReport(BaseModel):
    status: AuthorizationStatus = "authorized"
    position: Optional[Coordinate] = None


class LocationStatus(BaseModel):
    status: AuthorizationStatus
    position: Optional[Coordinate] = None
