"""Wire models for the external ranking engine.

Request (``POST {base_url}/rank``)::

    {"user_location": {"latitude", "longitude"}, "max_distance_km", "limit",
     "events": [{"id", "title", "description", "latitude", "longitude",
                 "start_time", "end_time"?, "category", "view_count",
                 "save_count", "created_at"}]}

Response::

    {"ranked_events": [{"id", "score", "distance_km"}], "processing_time_ms"}
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


def to_iso8601(value: datetime) -> str:
    """Render an instant as ``YYYY-MM-DDTHH:MM:SSZ`` style UTC text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class RankContext(BaseModel):
    """Query context the candidates are ranked against."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    max_distance_km: float = Field(..., gt=0)
    limit: int = Field(..., ge=1)
    # Carried for callers; the engine contract has no slot for these yet.
    preferred_category_ids: Optional[List[UUID]] = None
    query: Optional[str] = None


class UserLocation(BaseModel):
    latitude: float
    longitude: float


class RankingEventPayload(BaseModel):
    """Normalized projection of one candidate event."""

    id: str
    title: str
    description: str = ""
    latitude: float
    longitude: float
    start_time: str
    end_time: Optional[str] = None
    category: str = ""
    view_count: int = 0
    save_count: int = 0
    created_at: str


class RankingRequest(BaseModel):
    user_location: UserLocation
    max_distance_km: float
    limit: int
    events: List[RankingEventPayload] = Field(default_factory=list)

    def to_payload(self) -> dict:
        """JSON body for the engine; ``end_time`` is omitted when unknown."""
        payload = self.model_dump(exclude={"events"})
        payload["events"] = [
            event.model_dump(exclude_none=True) for event in self.events
        ]
        return payload


class RankedEntry(BaseModel):
    id: str
    score: float
    distance_km: float


class RankingResponse(BaseModel):
    ranked_events: List[RankedEntry]
    processing_time_ms: float
