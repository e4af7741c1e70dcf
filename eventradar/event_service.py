"""Ingestion and retrieval orchestration for events."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

import asyncpg
import structlog

from eventradar.database.connections import DatabaseManager
from eventradar.database.repositories import CategoryRepository, EventRepository, SourceRepository
from eventradar.database.repositories.base import STORAGE_ERRORS
from eventradar.errors import StorageError, ValidationError
from eventradar.models.config import RadarConfig
from eventradar.models.event import (
    Category,
    Event,
    EventIngest,
    IngestFailure,
    IngestResult,
    NearbyRequest,
    Page,
    ensure_utc,
)
from eventradar.models.ranking import RankContext
from eventradar.models.validation import parse_ingest_record, validate_ingest_record
from eventradar.ranking_client import HTTPRankingEngine, RankingClient
from eventradar.reference_resolver import ReferenceDataResolver


logger = structlog.get_logger(__name__)

UPCOMING_CACHE_PREFIX = "events:upcoming"
CATEGORIES_CACHE_KEY = "categories:all"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventService:
    """Composes storage, reference resolution and ranking into the query surface.

    Ingestion is per-item by default: each record is validated, then its
    category, source and event rows are written in one transaction of its
    own, and failures are reported per record. With ``ingest_atomic`` the
    whole batch shares one transaction and the first failure aborts it.
    """

    def __init__(self,
                 db_manager: DatabaseManager,
                 events: EventRepository,
                 categories: CategoryRepository,
                 resolver: ReferenceDataResolver,
                 ranking: RankingClient,
                 config: RadarConfig,
                 clock: Callable[[], datetime] = utc_now):
        self.db_manager = db_manager
        self.events = events
        self.categories = categories
        self.resolver = resolver
        self.ranking = ranking
        self.config = config
        self.clock = clock
        self.logger = logger.bind(component="event_service")

    @classmethod
    def from_config(cls, db_manager: DatabaseManager, config: RadarConfig) -> "EventService":
        """Wire the service with PostgreSQL repositories and the HTTP ranking engine."""
        categories = CategoryRepository(db_manager)
        sources = SourceRepository(db_manager)
        engine = HTTPRankingEngine(config.ranking_engine_url, config.ranking_timeout_seconds)
        return cls(
            db_manager=db_manager,
            events=EventRepository(db_manager),
            categories=categories,
            resolver=ReferenceDataResolver(categories, sources),
            ranking=RankingClient(engine, config.ranking_timeout_seconds),
            config=config,
        )

    @asynccontextmanager
    async def _transaction(self, conn: Optional[asyncpg.Connection] = None):
        if conn is not None:
            yield conn
            return
        try:
            async with self.db_manager.get_postgres_transaction() as acquired:
                yield acquired
        except STORAGE_ERRORS as e:
            self.logger.error("Transaction failed", error=str(e))
            raise StorageError(f"Transaction failed: {e}") from e

    # Ingestion

    async def ingest(self, records: List[Union[EventIngest, Dict[str, Any]]]) -> IngestResult:
        """
        Ingest a batch of inbound event records.

        Args:
            records: Parsed records or raw mappings, in delivery order

        Returns:
            Created events plus a failure entry for every rejected record

        Raises:
            ValidationError, StorageError: Only in batch-atomic mode
        """
        self.logger.info("Ingesting events", count=len(records), atomic=self.config.ingest_atomic)

        if self.config.ingest_atomic:
            result = await self._ingest_atomic(records)
        else:
            result = await self._ingest_each(records)

        if result.events:
            await self.events.cache_clear_pattern(f"{UPCOMING_CACHE_PREFIX}:*")
            await self.categories.cache_clear_pattern(CATEGORIES_CACHE_KEY)

        self.logger.info("Ingestion finished", created=len(result.events),
                         failed=len(result.failures))
        return result

    async def _ingest_each(self, records: List[Any]) -> IngestResult:
        result = IngestResult()
        for index, record in enumerate(records):
            try:
                result.events.append(await self.ingest_one(record))
            except ValidationError as e:
                result.failures.append(
                    IngestFailure(index=index, error_type=e.error_code, errors=e.errors)
                )
            except StorageError as e:
                self.logger.error("Event ingestion failed", index=index, error=e.message)
                result.failures.append(
                    IngestFailure(index=index, error_type=e.error_code, errors=[e.message])
                )
        return result

    async def _ingest_atomic(self, records: List[Any]) -> IngestResult:
        errors: List[str] = []
        parsed: List[EventIngest] = []
        for index, raw in enumerate(records):
            try:
                record = parse_ingest_record(raw)
            except ValidationError as e:
                errors.extend(f"events[{index}]: {error}" for error in e.errors)
                continue
            validation = validate_ingest_record(record)
            errors.extend(f"events[{index}]: {error}" for error in validation.errors)
            parsed.append(record)
        if errors:
            raise ValidationError(errors)

        result = IngestResult()
        async with self._transaction() as conn:
            for record in parsed:
                result.events.append(await self.ingest_one(record, conn))
        return result

    async def ingest_one(self, record: Union[EventIngest, Dict[str, Any]],
                         conn: Optional[asyncpg.Connection] = None) -> Event:
        """
        Parse, validate, resolve references for, and persist one record.

        Category, source and event are written in the same transaction, so a
        failure never leaves a new reference row without its event.
        """
        record = parse_ingest_record(record)
        validation = validate_ingest_record(record)
        if not validation:
            raise ValidationError(validation.errors)

        async with self._transaction(conn) as c:
            category = await self.resolver.resolve_category(record.category, c)
            source = await self.resolver.resolve_source(record.source, c)

            event = Event(
                title=record.title,
                description=record.description,
                latitude=record.latitude,
                longitude=record.longitude,
                address=record.address,
                start_time=record.start_time,
                end_time=record.end_time,
                category=category.name,
                category_id=category.id,
                source=source.name,
                source_id=source.id,
                source_url=record.source_url,
                image_url=record.image_url,
                organizer_name=record.organizer,
                organizer_contact=record.organizer_contact,
                capacity=record.capacity,
                is_verified=False,
                raw_data=record.raw_data,
            )
            return await self.events.save(event, c)

    # Retrieval

    async def nearby(self, request: NearbyRequest) -> List[Event]:
        """
        Upcoming events within ``max_distance_km``, ranked by the engine.

        Storage applies the radius and start-time filter; ranking then orders
        and truncates, or degrades to the first ``limit`` candidates.
        """
        max_distance_km = request.max_distance_km or self.config.default_max_distance_km
        limit = request.limit or self.config.default_limit
        radius_meters = max_distance_km * 1000.0
        candidates = await self.events.find_nearby(
            request.latitude, request.longitude, radius_meters, self.clock()
        )

        context = RankContext(
            latitude=request.latitude,
            longitude=request.longitude,
            max_distance_km=max_distance_km,
            limit=limit,
            preferred_category_ids=request.preferred_category_ids,
            query=request.query,
        )
        return await self.ranking.rank(candidates, context)

    async def get_event(self, event_id: UUID) -> Optional[Event]:
        """Return the event, or None when no event has this id."""
        return await self.events.find_by_id(event_id)

    async def list_upcoming(self, page: int = 0, size: Optional[int] = None) -> Page[Event]:
        """Page of not-yet-started events, most recently created first."""
        if page < 0:
            raise ValidationError(["Page must not be negative"])
        size = size or self.config.default_page_size
        if size < 1:
            raise ValidationError(["Page size must be positive"])
        size = min(size, self.config.max_page_size)

        cache_key = f"{UPCOMING_CACHE_PREFIX}:{page}:{size}"
        cached = await self.events.cache_get(cache_key)
        if cached is not None:
            return Page[Event].model_validate(cached)

        result = await self.events.find_upcoming(self.clock(), page, size)
        await self.events.cache_set(cache_key, result.model_dump(mode="json"),
                                    self.config.upcoming_cache_ttl_seconds)
        return result

    async def search(self, query: str) -> List[Event]:
        """Events whose title or description contains ``query``, ignoring case."""
        if query is None or not query.strip():
            raise ValidationError(["Search query must not be blank"])
        return await self.events.search(query)

    async def list_by_category(self, category_id: UUID) -> List[Event]:
        """Upcoming events of a category, soonest first."""
        return await self.events.find_by_category(category_id, self.clock())

    async def list_by_source(self, source_id: UUID, since: Optional[datetime] = None) -> List[Event]:
        """Events from one source starting after ``since`` (default: now), soonest first."""
        start = ensure_utc(since) if since is not None else self.clock()
        return await self.events.find_by_source_since(source_id, start)

    async def list_categories(self) -> List[Category]:
        """All categories, by name."""
        cached = await self.categories.cache_get(CATEGORIES_CACHE_KEY)
        if cached is not None:
            return [Category.model_validate(item) for item in cached]

        categories = await self.categories.find_all(order_by="name")
        await self.categories.cache_set(
            CATEGORIES_CACHE_KEY,
            [category.model_dump(mode="json") for category in categories],
            self.config.categories_cache_ttl_seconds,
        )
        return categories

    async def health(self) -> Dict[str, Any]:
        """Storage and ranking engine health."""
        health = await self.db_manager.health_check()
        ranking_up = await self.ranking.health_check()
        health["ranking_engine"] = {"status": "healthy" if ranking_up else "unavailable"}
        # Ranking has a fallback, so it can only degrade the service.
        if not ranking_up and health["overall"] == "healthy":
            health["overall"] = "degraded"
        return health
