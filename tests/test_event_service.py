"""Tests for ingestion and retrieval through EventService."""

import asyncio
from datetime import timedelta

import aiohttp
import pytest

from eventradar.database.repositories import CategoryRepository, EventRepository
from eventradar.errors import StorageError, ValidationError
from eventradar.event_service import CATEGORIES_CACHE_KEY, EventService
from eventradar.models.event import NearbyRequest
from eventradar.ranking_client import HTTPRankingEngine
from tests.factories import NOW, make_event, make_ingest
from tests.fakes import rank_by_title


def _store(fake_events, *events):
    for event in events:
        fake_events.rows[event.id] = event
    return events


class TestIngest:
    """Per-item ingestion."""

    @pytest.mark.asyncio
    async def test_ingest_and_read_back(self, event_service):
        record = make_ingest(organizer="Parks Dept", capacity=40,
                             end_time=NOW + timedelta(days=3, hours=2))

        result = await event_service.ingest([record])

        assert result.count == 1
        assert result.failures == []
        stored = await event_service.get_event(result.events[0].id)
        assert stored.title == "Community Cleanup"
        assert (stored.latitude, stored.longitude) == (40.7, -74.0)
        assert stored.start_time == record.start_time
        assert stored.end_time == record.end_time
        assert stored.category == "Volunteering"
        assert stored.source == "EventbriteFeed"
        assert stored.organizer_name == "Parks Dept"
        assert stored.capacity == 40
        assert stored.is_verified is False
        assert stored.raw_data == {"external_id": "eb-42", "nested": {"a": [1, 2, None]}}
        assert stored.score is None and stored.distance_km is None

    @pytest.mark.asyncio
    async def test_invalid_record_is_rejected_without_writes(self, event_service, fake_events,
                                                             fake_categories, fake_sources):
        result = await event_service.ingest([make_ingest(latitude=91.0)])

        assert result.count == 0
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.index == 0
        assert failure.error_type == "validation_error"
        assert failure.errors == ["Latitude must be between -90 and 90, got 91.0"]
        assert fake_events.rows == {}
        assert fake_categories.rows == {}
        assert fake_sources.rows == {}

    @pytest.mark.asyncio
    async def test_records_succeed_or_fail_independently(self, event_service, fake_events):
        records = [
            make_ingest(title="First"),
            make_ingest(title="", category=""),
            make_ingest(title="Third"),
        ]

        result = await event_service.ingest(records)

        assert [e.title for e in result.events] == ["First", "Third"]
        assert [f.index for f in result.failures] == [1]
        assert result.failures[0].errors == ["Title is required", "Category is required"]
        assert len(fake_events.rows) == 2

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back_that_record(self, event_service, fake_events, fake_db):
        fake_events.fail_on_save = True

        result = await event_service.ingest([make_ingest()])

        assert result.count == 0
        assert result.failures[0].error_type == "storage_error"
        assert fake_db.rolled_back == 1
        assert fake_db.committed == 0

    @pytest.mark.asyncio
    async def test_reference_lookup_failure_is_reported(self, event_service, fake_categories):
        fake_categories.fail = True

        result = await event_service.ingest([make_ingest()])

        assert result.failures[0].error_type == "storage_error"
        assert result.failures[0].errors == ["Database unavailable"]

    @pytest.mark.asyncio
    async def test_category_reused_by_exact_name(self, event_service, fake_categories):
        result = await event_service.ingest([
            make_ingest(category="Music"),
            make_ingest(category="Music"),
            make_ingest(category="music"),
        ])

        first, second, third = result.events
        assert first.category_id == second.category_id
        assert third.category_id != first.category_id
        assert set(fake_categories.rows) == {"Music", "music"}

    @pytest.mark.asyncio
    async def test_concurrent_ingest_creates_one_source(self, event_service, fake_sources):
        results = await asyncio.gather(*(
            event_service.ingest([make_ingest(title=f"Event {i}", source="EventbriteFeed")])
            for i in range(5)
        ))

        assert list(fake_sources.rows) == ["EventbriteFeed"]
        assert len({r.events[0].source_id for r in results}) == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, event_service, fake_db):
        result = await event_service.ingest([])

        assert result.count == 0
        assert result.failures == []
        assert fake_db.committed == 0

    @pytest.mark.asyncio
    async def test_ingest_invalidates_caches(self, event_service, fake_events, fake_categories):
        fake_events.cache["events:upcoming:0:20"] = {"items": []}
        fake_categories.cache[CATEGORIES_CACHE_KEY] = []

        await event_service.ingest([make_ingest()])

        assert fake_events.cache == {}
        assert fake_categories.cache == {}

    @pytest.mark.asyncio
    async def test_failed_batch_keeps_caches(self, event_service, fake_events):
        fake_events.cache["events:upcoming:0:20"] = {"items": []}

        await event_service.ingest([make_ingest(title=None)])

        assert fake_events.cleared == []

    @pytest.mark.asyncio
    async def test_badly_typed_record_fails_alone(self, event_service, fake_events):
        good = {"title": "Farmers Market", "latitude": 40.7, "longitude": -74.0,
                "start_time": "2030-06-04T09:00:00Z", "category": "Food",
                "source": "MeetupFeed"}
        records = [good, dict(good, start_time="next tuesday"), dict(good, capacity=2.5),
                   "not an object"]

        result = await event_service.ingest(records)

        assert [e.title for e in result.events] == ["Farmers Market"]
        assert result.events[0].start_time == NOW + timedelta(days=2, hours=-3)
        assert [f.index for f in result.failures] == [1, 2, 3]
        assert all(f.error_type == "validation_error" for f in result.failures)
        assert result.failures[0].errors[0].startswith("start_time: ")
        assert result.failures[1].errors[0].startswith("capacity: ")
        assert len(fake_events.rows) == 1


class TestAtomicIngest:
    """Batch-atomic ingestion."""

    @pytest.fixture
    def atomic_service(self, event_service, radar_config):
        event_service.config = radar_config.model_copy(update={"ingest_atomic": True})
        return event_service

    @pytest.mark.asyncio
    async def test_whole_batch_in_one_transaction(self, atomic_service, fake_db):
        result = await atomic_service.ingest([make_ingest(title="A"), make_ingest(title="B")])

        assert [e.title for e in result.events] == ["A", "B"]
        assert fake_db.committed == 1

    @pytest.mark.asyncio
    async def test_any_invalid_record_rejects_batch(self, atomic_service, fake_events, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            await atomic_service.ingest([make_ingest(), make_ingest(longitude=181.0)])

        assert exc_info.value.errors == [
            "events[1]: Longitude must be between -180 and 180, got 181.0"
        ]
        assert fake_events.rows == {}
        assert fake_db.committed == 0

    @pytest.mark.asyncio
    async def test_storage_failure_aborts_batch(self, atomic_service, fake_events, fake_db):
        fake_events.fail_on_save = True

        with pytest.raises(StorageError):
            await atomic_service.ingest([make_ingest(), make_ingest()])

        assert fake_db.rolled_back == 1

    @pytest.mark.asyncio
    async def test_badly_typed_record_rejects_batch(self, atomic_service, fake_events, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            await atomic_service.ingest([make_ingest(), {"title": "X", "latitude": "north"}])

        assert exc_info.value.errors[0].startswith("events[1]: latitude: ")
        assert fake_events.rows == {}
        assert fake_db.committed == 0


class TestNearby:
    """Location-aware retrieval."""

    @pytest.fixture
    def neighbourhood(self, fake_events):
        return _store(
            fake_events,
            make_event("Late Show", 40.7, -74.0, start_in=timedelta(hours=5)),
            make_event("Brunch", 40.71, -74.0, start_in=timedelta(hours=1)),
            make_event("Gallery", 40.7, -74.03, start_in=timedelta(hours=3)),
            make_event("Uptown", 40.8, -74.0, start_in=timedelta(hours=2)),
            make_event("Upstate", 41.5, -74.0, start_in=timedelta(hours=2)),
            make_event("Yesterday", 40.7, -74.0, start_in=-timedelta(days=1)),
        )

    @pytest.mark.asyncio
    async def test_radius_is_passed_in_meters(self, event_service, fake_events):
        request = NearbyRequest(latitude=40.7, longitude=-74.0, max_distance_km=5, limit=10)

        await event_service.nearby(request)

        assert fake_events.nearby_calls == [(40.7, -74.0, 5000.0, NOW)]

    @pytest.mark.asyncio
    async def test_engine_down_returns_unscored_candidates(self, event_service, fake_engine,
                                                           neighbourhood):
        fake_engine.response = aiohttp.ClientConnectionError("connection refused")
        request = NearbyRequest(latitude=40.7, longitude=-74.0, max_distance_km=5, limit=10)

        events = await event_service.nearby(request)

        assert [e.title for e in events] == ["Brunch", "Gallery", "Late Show"]
        assert all(e.score is None and e.distance_km is None for e in events)

    @pytest.mark.asyncio
    async def test_ranked_results_follow_engine(self, event_service, fake_engine, neighbourhood):
        fake_engine.response = rank_by_title
        request = NearbyRequest(latitude=40.7, longitude=-74.0, max_distance_km=5, limit=2,
                                query="art")

        events = await event_service.nearby(request)

        assert [e.title for e in events] == ["Late Show", "Gallery"]
        assert all(e.is_ranked for e in events)
        sent = fake_engine.requests[0]
        assert sent.limit == 2
        assert sent.max_distance_km == 5
        assert {e.title for e in sent.events} == {"Brunch", "Gallery", "Late Show"}

    @pytest.mark.asyncio
    async def test_no_candidates_skips_engine(self, event_service, fake_engine):
        request = NearbyRequest(latitude=0.0, longitude=0.0)

        assert await event_service.nearby(request) == []
        assert fake_engine.requests == []

    @pytest.mark.asyncio
    async def test_configured_defaults_fill_missing_radius_and_limit(
            self, event_service, fake_events, fake_engine, radar_config, neighbourhood):
        event_service.config = radar_config.model_copy(
            update={"default_max_distance_km": 3.0, "default_limit": 2}
        )
        fake_engine.response = aiohttp.ClientConnectionError("connection refused")

        events = await event_service.nearby(NearbyRequest(latitude=40.7, longitude=-74.0))

        assert fake_events.nearby_calls == [(40.7, -74.0, 3000.0, NOW)]
        assert [e.title for e in events] == ["Brunch", "Gallery"]
        sent = fake_engine.requests[0]
        assert sent.max_distance_km == 3.0
        assert sent.limit == 2


class TestQueries:
    """Listing, search and lookups."""

    @pytest.mark.asyncio
    async def test_get_event_missing(self, event_service):
        assert await event_service.get_event(make_event().id) is None

    @pytest.mark.asyncio
    async def test_list_upcoming_is_cached(self, event_service, fake_events):
        _store(fake_events, make_event("Cached"))

        first = await event_service.list_upcoming()
        _store(fake_events, make_event("Not yet visible"))
        second = await event_service.list_upcoming()

        assert "events:upcoming:0:20" in fake_events.cache
        assert [e.title for e in first.items] == ["Cached"]
        assert [e.title for e in second.items] == ["Cached"]

    @pytest.mark.asyncio
    async def test_list_upcoming_clamps_page_size(self, event_service):
        page = await event_service.list_upcoming(0, 1000)

        assert page.size == 100

    @pytest.mark.asyncio
    async def test_list_upcoming_rejects_negative_page(self, event_service):
        with pytest.raises(ValidationError):
            await event_service.list_upcoming(-1)

    @pytest.mark.asyncio
    async def test_list_upcoming_newest_first(self, event_service):
        await event_service.ingest([make_ingest(title="Older"), make_ingest(title="Newer")])

        page = await event_service.list_upcoming()

        assert [e.title for e in page.items] == ["Newer", "Older"]
        assert page.total == 2

    @pytest.mark.asyncio
    async def test_search(self, event_service, fake_events):
        _store(fake_events, make_event("Jazz Night"), make_event("Book Club", description="jazz age"),
               make_event("Chess"))

        found = await event_service.search("JAZZ")

        assert {e.title for e in found} == {"Jazz Night", "Book Club"}

    @pytest.mark.asyncio
    async def test_search_keeps_surrounding_whitespace(self, event_service, fake_events):
        _store(fake_events, make_event("Jazz Night"), make_event("Book Club", description="jazz age"))

        assert [e.title for e in await event_service.search(" age")] == ["Book Club"]
        assert await event_service.search("Night ") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_blank_search_rejected(self, event_service, query):
        with pytest.raises(ValidationError):
            await event_service.search(query)

    @pytest.mark.asyncio
    async def test_list_by_category(self, event_service, fake_events):
        music, = _store(fake_events, make_event("Concert"))
        _store(fake_events, make_event("Other"))

        events = await event_service.list_by_category(music.category_id)

        assert [e.title for e in events] == ["Concert"]

    @pytest.mark.asyncio
    async def test_list_by_source_defaults_to_now(self, event_service, fake_events):
        later = make_event("Later", start_in=timedelta(hours=4))
        source_id = later.source_id
        _store(fake_events, later,
               make_event("Sooner", start_in=timedelta(hours=1), source_id=source_id),
               make_event("Past", start_in=-timedelta(hours=1), source_id=source_id),
               make_event("Elsewhere"))

        events = await event_service.list_by_source(source_id)

        assert [e.title for e in events] == ["Sooner", "Later"]

    @pytest.mark.asyncio
    async def test_list_by_source_since(self, event_service, fake_events):
        later = make_event("Later", start_in=timedelta(hours=4))
        _store(fake_events, later,
               make_event("Sooner", start_in=timedelta(hours=1), source_id=later.source_id))

        events = await event_service.list_by_source(later.source_id, NOW + timedelta(hours=2))

        assert [e.title for e in events] == ["Later"]

    @pytest.mark.asyncio
    async def test_list_categories_is_cached(self, event_service, fake_categories):
        await event_service.ingest([make_ingest(category="Sports"), make_ingest(category="Art")])

        categories = await event_service.list_categories()
        cached = await event_service.list_categories()

        assert [c.name for c in categories] == ["Art", "Sports"]
        assert [c.name for c in cached] == ["Art", "Sports"]
        assert fake_categories.cache[CATEGORIES_CACHE_KEY][0]["name"] == "Art"


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, event_service):
        health = await event_service.health()

        assert health["overall"] == "healthy"
        assert health["ranking_engine"] == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_ranking_outage_degrades(self, event_service, fake_engine):
        fake_engine.healthy = False

        health = await event_service.health()

        assert health["overall"] == "degraded"
        assert health["ranking_engine"] == {"status": "unavailable"}


def test_from_config_wires_postgres_and_http(mock_db_manager, radar_config):
    service = EventService.from_config(mock_db_manager, radar_config)

    assert isinstance(service.events, EventRepository)
    assert isinstance(service.categories, CategoryRepository)
    assert isinstance(service.ranking.engine, HTTPRankingEngine)
    assert service.ranking.engine.base_url == "http://ranking.test"
