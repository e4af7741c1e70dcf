"""Event-related data models."""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


T = TypeVar("T")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Category(BaseModel):
    """Category reference row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None


class Source(BaseModel):
    """Ingestion origin (a feed, scraper or partner)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class Event(BaseModel):
    """Canonical stored event.

    ``distance_km`` and ``score`` are query-time values: they are never
    persisted and are only populated on ranked nearby results.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    category: Optional[str] = Field(None, description="Category name")
    category_id: Optional[UUID] = None
    source: Optional[str] = Field(None, description="Source name")
    source_id: Optional[UUID] = None
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    organizer_name: Optional[str] = None
    organizer_contact: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    is_verified: bool = False
    raw_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    distance_km: Optional[float] = None
    score: Optional[float] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_ranked(self) -> bool:
        return self.score is not None and self.distance_km is not None


class EventIngest(BaseModel):
    """One inbound event record as delivered by a feed or scraper.

    Fields are deliberately permissive so that each record can be validated
    on its own and rejected without failing the rest of the batch.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    category: Optional[str] = None
    source: Optional[str] = None
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    organizer: Optional[str] = None
    organizer_contact: Optional[str] = None
    capacity: Optional[int] = None
    raw_data: Optional[Dict[str, Any]] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class IngestBatch(BaseModel):
    """Named list of inbound event records.

    Records are kept unparsed here and parsed one by one at ingest time, so a
    badly typed record is reported on its own instead of rejecting the batch.
    """

    events: List[Any] = Field(default_factory=list)


class IngestFailure(BaseModel):
    """Why a single record of a batch was not ingested."""

    index: int
    error_type: str
    errors: List[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    """Outcome of an ingest call."""

    events: List[Event] = Field(default_factory=list)
    failures: List[IngestFailure] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.events)


class NearbyRequest(BaseModel):
    """Location-aware query for upcoming events."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    max_distance_km: Optional[float] = Field(None, gt=0, description="Defaults to the configured radius")
    limit: Optional[int] = Field(None, ge=1, description="Defaults to the configured limit")
    preferred_category_ids: Optional[List[UUID]] = None
    query: Optional[str] = None


class Page(BaseModel, Generic[T]):
    """One page of results."""

    items: List[T] = Field(default_factory=list)
    page: int = 0
    size: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size
