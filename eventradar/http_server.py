"""HTTP API for event ingestion and location-aware retrieval."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from eventradar import __version__
from eventradar.database.connections import DatabaseManager
from eventradar.errors import NotFoundError, RadarError, StorageError, ValidationError
from eventradar.event_service import EventService
from eventradar.models.config import RadarConfig
from eventradar.models.event import Category, Event, IngestBatch, NearbyRequest, Page
from eventradar.models.validation import describe_type_errors


logger = structlog.get_logger(__name__)


class ErrorResponse(BaseModel):
    """Error response format."""
    error: Dict[str, Any] = Field(
        ...,
        description="Error details",
        examples=[{
            "message": "Latitude must be between -90 and 90, got 91.0",
            "type": "validation_error",
            "errors": ["Latitude must be between -90 and 90, got 91.0"],
        }]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage on startup and release it on shutdown."""
    config = RadarConfig()
    db_manager = DatabaseManager(config)
    await db_manager.initialize()

    app.state.config = config
    app.state.event_service = EventService.from_config(db_manager, config)
    logger.info("eventradar API started", version=__version__)
    try:
        yield
    finally:
        await db_manager.cleanup()


app = FastAPI(
    title="eventradar API",
    description="Location-aware event ingestion and retrieval",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_event_service(request: Request) -> EventService:
    return request.app.state.event_service


def create_error_response(error: RadarError, status_code: int) -> JSONResponse:
    """Create a standardized error response."""
    body: Dict[str, Any] = {"message": error.message, "type": error.error_code}
    if isinstance(error, ValidationError):
        body["errors"] = error.errors
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=body).model_dump())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return create_error_response(exc, 422)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return create_error_response(ValidationError(describe_type_errors(exc.errors())), 422)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return create_error_response(exc, 404)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage error while handling request", path=request.url.path, error=exc.message)
    return create_error_response(exc, 503)


def _event_json(events: List[Event]) -> List[Dict[str, Any]]:
    return [event.model_dump(mode="json", exclude_none=True) for event in events]


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "eventradar API",
        "version": __version__,
        "endpoints": {
            "ingest": "/api/v1/events/ingest",
            "events": "/api/v1/events",
            "nearby": "/api/v1/events/nearby",
            "search": "/api/v1/events/search",
            "by_source": "/api/v1/events/source/{source_id}",
            "categories": "/api/v1/categories",
        }
    }


@app.get("/health")
async def health(service: EventService = Depends(get_event_service)):
    """Storage and ranking engine health."""
    status = await service.health()
    status_code = 503 if status["overall"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=status)


@app.post("/api/v1/events/ingest", status_code=201)
async def ingest_events(batch: IngestBatch, service: EventService = Depends(get_event_service)):
    """Ingest a batch of events; each record succeeds or fails on its own."""
    result = await service.ingest(batch.events)

    status_code = 201
    if result.failures and not result.events:
        storage_failed = any(f.error_type == StorageError.error_code for f in result.failures)
        status_code = 503 if storage_failed else 422

    return JSONResponse(
        status_code=status_code,
        content={
            "success": not result.failures,
            "count": result.count,
            "events": _event_json(result.events),
            "failures": jsonable_encoder(result.failures),
        },
    )


@app.get("/api/v1/events", response_model=Page[Event], response_model_exclude_none=True)
async def list_upcoming_events(page: int = Query(0, ge=0),
                               size: Optional[int] = Query(None, ge=1),
                               service: EventService = Depends(get_event_service)):
    """Upcoming events, most recently created first."""
    return await service.list_upcoming(page, size)


@app.post("/api/v1/events/nearby", response_model=List[Event], response_model_exclude_none=True)
async def nearby_events(request: NearbyRequest, service: EventService = Depends(get_event_service)):
    """Upcoming events around a location, ranked when the ranking engine is available."""
    return await service.nearby(request)


@app.get("/api/v1/events/search", response_model=List[Event], response_model_exclude_none=True)
async def search_events(query: str = Query(..., min_length=1),
                        service: EventService = Depends(get_event_service)):
    """Case-insensitive search over title and description."""
    return await service.search(query)


@app.get("/api/v1/events/category/{category_id}", response_model=List[Event],
         response_model_exclude_none=True)
async def events_by_category(category_id: UUID, service: EventService = Depends(get_event_service)):
    """Upcoming events of one category."""
    return await service.list_by_category(category_id)


@app.get("/api/v1/events/source/{source_id}", response_model=List[Event],
         response_model_exclude_none=True)
async def events_by_source(source_id: UUID, since: Optional[datetime] = None,
                           service: EventService = Depends(get_event_service)):
    """Events from one source starting after ``since``, or after now."""
    return await service.list_by_source(source_id, since)


@app.get("/api/v1/events/{event_id}", response_model=Event, response_model_exclude_none=True)
async def get_event(event_id: UUID, service: EventService = Depends(get_event_service)):
    """Single event by id."""
    event = await service.get_event(event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    return event


@app.get("/api/v1/categories", response_model=List[Category], response_model_exclude_none=True)
async def list_categories(service: EventService = Depends(get_event_service)):
    """All known categories."""
    return await service.list_categories()
