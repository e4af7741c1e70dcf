"""Event repository for managing event data."""

import json
from datetime import datetime
from typing import List, Optional
from uuid import UUID
import asyncpg
import structlog

from eventradar.database.connections import DatabaseManager
from eventradar.database.repositories.base import BaseRepository, STORAGE_ERRORS, decode_json
from eventradar.models.event import Event, Page


logger = structlog.get_logger(__name__)

EVENT_COLUMNS = """
    e.id, e.title, e.description, e.latitude, e.longitude, e.address,
    e.start_time, e.end_time,
    e.category_id, c.name AS category_name,
    e.source_id, s.name AS source_name,
    e.source_url, e.image_url, e.organizer_name, e.organizer_contact,
    e.capacity, e.is_verified, e.raw_data, e.created_at, e.updated_at
"""

EVENT_JOINS = """
    JOIN categories c ON c.id = e.category_id
    JOIN sources s ON s.id = e.source_id
"""

# The geography cast makes ST_DWithin measure on the WGS84 spheroid in
# metres, the same model the radius is expressed in.
NEARBY_CONDITION = (
    "ST_DWithin(e.location, ST_SetSRID(ST_MakePoint($2, $1), 4326)::geography, $3) "
    "AND e.start_time >= $4"
)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the text matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class EventRepository(BaseRepository[Event]):
    """Repository for events stored in PostgreSQL/PostGIS."""

    def __init__(self, db_manager: DatabaseManager):
        """Initialize event repository."""
        super().__init__(db_manager, "events")
        self.logger = logger.bind(component="event_repository")

    @property
    def select_clause(self) -> str:
        return f"SELECT {EVENT_COLUMNS} FROM events e {EVENT_JOINS}"

    @property
    def count_clause(self) -> str:
        return "SELECT COUNT(*) FROM events e"

    @property
    def id_column(self) -> str:
        return "e.id"

    def _row_to_model(self, row: asyncpg.Record) -> Event:
        """Convert database row to Event model."""
        return Event(
            id=row['id'],
            title=row['title'],
            description=row['description'],
            latitude=row['latitude'],
            longitude=row['longitude'],
            address=row['address'],
            start_time=row['start_time'],
            end_time=row['end_time'],
            category=row['category_name'],
            category_id=row['category_id'],
            source=row['source_name'],
            source_id=row['source_id'],
            source_url=row['source_url'],
            image_url=row['image_url'],
            organizer_name=row['organizer_name'],
            organizer_contact=row['organizer_contact'],
            capacity=row['capacity'],
            is_verified=row['is_verified'],
            raw_data=decode_json(row['raw_data']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    async def save(self, event: Event, conn: Optional[asyncpg.Connection] = None) -> Event:
        """
        Persist a new event.

        The id and both timestamps are assigned by the database. The point
        geography used by radius queries is derived from latitude/longitude.

        Args:
            event: Event with ``category_id`` and ``source_id`` already resolved
            conn: Optional connection to run on

        Returns:
            The canonical stored event, including category and source names
        """
        if event.category_id is None or event.source_id is None:
            raise ValueError("Event must reference a resolved category and source before saving")

        query = f"""
            WITH inserted AS (
                INSERT INTO events (
                    title, description, latitude, longitude, location, address,
                    start_time, end_time, category_id, source_id,
                    source_url, image_url, organizer_name, organizer_contact,
                    capacity, is_verified, raw_data
                )
                VALUES (
                    $1, $2, $3, $4,
                    ST_SetSRID(ST_MakePoint($4, $3), 4326)::geography,
                    $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16::jsonb
                )
                RETURNING *
            )
            SELECT {EVENT_COLUMNS} FROM inserted e {EVENT_JOINS}
        """
        raw_data = json.dumps(event.raw_data) if event.raw_data is not None else None

        try:
            async with self._connection(conn) as c:
                row = await c.fetchrow(
                    query,
                    event.title,
                    event.description,
                    event.latitude,
                    event.longitude,
                    event.address,
                    event.start_time,
                    event.end_time,
                    event.category_id,
                    event.source_id,
                    event.source_url,
                    event.image_url,
                    event.organizer_name,
                    event.organizer_contact,
                    event.capacity,
                    event.is_verified,
                    raw_data,
                )
        except STORAGE_ERRORS as e:
            raise self._storage_error("Error saving event", e, title=event.title) from e

        saved = self._row_to_model(row)
        self.logger.info("Event saved", id=str(saved.id), category=saved.category,
                         source=saved.source)
        return saved

    async def find_upcoming(self, now: datetime, page: int = 0, size: int = 20) -> Page[Event]:
        """
        Page through events that have not started yet, newest first.

        Args:
            now: Lower bound on start time
            page: Zero-based page number
            size: Page size

        Returns:
            One page of events ordered by creation time, descending
        """
        total = await self.count("e.start_time >= $1", [now])
        items = await self.find_by_criteria(
            "e.start_time >= $1",
            [now],
            order_by="e.created_at DESC, e.id",
            limit=size,
            offset=page * size,
        )
        return Page[Event](items=items, page=page, size=size, total=total)

    async def find_nearby(self,
                          latitude: float,
                          longitude: float,
                          radius_meters: float,
                          now: datetime) -> List[Event]:
        """
        Find upcoming events within a great-circle radius.

        Args:
            latitude: Centre latitude in degrees
            longitude: Centre longitude in degrees
            radius_meters: Inclusive radius in metres
            now: Lower bound on start time

        Returns:
            Matching events ordered by start time, ascending
        """
        events = await self.find_by_criteria(
            NEARBY_CONDITION,
            [latitude, longitude, radius_meters, now],
            order_by="e.start_time ASC, e.id",
        )

        self.logger.info("Found nearby events",
                         latitude=latitude,
                         longitude=longitude,
                         radius_meters=radius_meters,
                         count=len(events))
        return events

    async def find_by_category(self, category_id: UUID, now: datetime) -> List[Event]:
        """
        Find upcoming events of one category.

        Args:
            category_id: Category id
            now: Lower bound on start time

        Returns:
            Events ordered by start time, ascending
        """
        return await self.find_by_criteria(
            "e.category_id = $1 AND e.start_time >= $2",
            [category_id, now],
            order_by="e.start_time ASC, e.id",
        )

    async def find_by_source_since(self, source_id: UUID, since: datetime) -> List[Event]:
        """Events from one source starting after ``since``."""
        return await self.find_by_criteria(
            "e.source_id = $1 AND e.start_time > $2",
            [source_id, since],
            order_by="e.start_time ASC, e.id",
        )

    async def search(self, query: str) -> List[Event]:
        """
        Case-insensitive substring search over title and description.

        Args:
            query: Text to look for

        Returns:
            Matching events
        """
        pattern = f"%{escape_like(query)}%"
        events = await self.find_by_criteria(
            "(e.title ILIKE $1 ESCAPE '\\' OR e.description ILIKE $1 ESCAPE '\\')",
            [pattern],
            order_by="e.start_time ASC, e.id",
        )

        self.logger.info("Event search completed", query=query, results_count=len(events))
        return events
