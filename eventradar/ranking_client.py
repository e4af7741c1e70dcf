"""Client for the external ranking engine, with unranked fallback."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
import structlog
from pydantic import ValidationError as PydanticValidationError

from eventradar.errors import RankingUnavailableError
from eventradar.models.event import Event
from eventradar.models.ranking import (
    RankContext,
    RankingEventPayload,
    RankingRequest,
    RankingResponse,
    UserLocation,
    to_iso8601,
)


logger = structlog.get_logger(__name__)


class RankingEngine(ABC):
    """Transport to a ranking engine. Returns the decoded, untrusted body."""

    @abstractmethod
    async def rank(self, request: RankingRequest) -> Any:
        """Send a ranking request and return the decoded response body."""

    async def health_check(self) -> bool:
        return True


class HTTPRankingEngine(RankingEngine):
    """Ranking engine reached over HTTP at ``POST {base_url}/rank``."""

    def __init__(self, base_url: str, timeout_seconds: float = 5.0):
        """Initialize the engine transport.

        Args:
            base_url: Base URL of the ranking engine (e.g., "http://localhost:8081")
            timeout_seconds: Total time allowed for one request
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    async def rank(self, request: RankingRequest) -> Any:
        """POST the request to ``/rank``.

        Raises:
            aiohttp.ClientError: On connection failures and non-2xx statuses
            ValueError: If the body is not JSON
        """
        url = f"{self.base_url}/rank"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=request.to_payload(), headers=self.headers) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def health_check(self) -> bool:
        """Check if the ranking engine answers its health endpoint."""
        url = f"{self.base_url}/health"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.get(url) as response:
                    return response.status == 200
            except (aiohttp.ClientError, asyncio.TimeoutError):
                return False


class RankingClient:
    """Ranks nearby candidates through the engine, degrading to storage order.

    The engine is the ranking authority: on success the output follows its
    order and contains only candidates it returned, each annotated with
    ``score`` and ``distance_km``. On any failure the first ``limit``
    candidates are returned in their original order with neither value set.
    """

    def __init__(self, engine: RankingEngine, timeout_seconds: float = 5.0):
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self.logger = logger.bind(component="ranking_client")

    async def rank(self, candidates: List[Event], context: RankContext) -> List[Event]:
        """
        Rank candidates for a query context.

        Args:
            candidates: Events that already passed the distance/time filter
            context: User location, max distance, limit and optional filters

        Returns:
            Ranked events, or the unranked fallback; never raises for engine failures
        """
        if not candidates:
            return []

        try:
            return await self._rank_remote(candidates, context)
        except RankingUnavailableError as e:
            self.logger.warning("Ranking engine unavailable, returning unranked events",
                                error=e.message, candidates=len(candidates), limit=context.limit)
        except Exception as e:
            self.logger.exception("Unexpected ranking failure, returning unranked events",
                                  error=str(e), candidates=len(candidates))

        return self._fallback(candidates, context.limit)

    def build_request(self, candidates: List[Event], context: RankContext) -> RankingRequest:
        """Project candidates and context onto the engine's request shape."""
        return RankingRequest(
            user_location=UserLocation(latitude=context.latitude, longitude=context.longitude),
            max_distance_km=context.max_distance_km,
            limit=context.limit,
            events=[self._to_payload(event) for event in candidates],
        )

    @staticmethod
    def _to_payload(event: Event) -> RankingEventPayload:
        # TODO: fill view_count/save_count once interaction counts are stored.
        return RankingEventPayload(
            id=str(event.id),
            title=event.title,
            description=event.description or "",
            latitude=event.latitude,
            longitude=event.longitude,
            start_time=to_iso8601(event.start_time),
            end_time=to_iso8601(event.end_time) if event.end_time else None,
            category=event.category or "",
            view_count=0,
            save_count=0,
            created_at=to_iso8601(event.created_at or event.start_time),
        )

    async def _rank_remote(self, candidates: List[Event], context: RankContext) -> List[Event]:
        request = self.build_request(candidates, context)
        body = await self._call_engine(request)

        try:
            response = RankingResponse.model_validate(body)
        except PydanticValidationError as e:
            raise RankingUnavailableError(
                f"Malformed ranking response: {e.error_count()} invalid field(s)"
            ) from e

        ranked = self._reconcile(candidates, response)

        self.logger.info("Ranked events",
                         candidates=len(candidates),
                         returned=len(ranked),
                         dropped=len(response.ranked_events) - len(ranked),
                         processing_time_ms=response.processing_time_ms)
        return ranked

    async def _call_engine(self, request: RankingRequest) -> Any:
        try:
            return await asyncio.wait_for(self.engine.rank(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RankingUnavailableError(
                f"Ranking engine timed out after {self.timeout_seconds}s"
            ) from e
        except aiohttp.ClientResponseError as e:
            raise RankingUnavailableError(f"Ranking engine returned status {e.status}") from e
        except (aiohttp.ClientError, ValueError, OSError) as e:
            raise RankingUnavailableError(f"Ranking engine request failed: {e}") from e

    @staticmethod
    def _reconcile(candidates: List[Event], response: RankingResponse) -> List[Event]:
        by_id: Dict[str, Event] = {str(event.id): event for event in candidates}
        seen = set()
        ranked: List[Event] = []

        # Unknown and repeated ids are dropped; engine order is kept.
        for entry in response.ranked_events:
            candidate: Optional[Event] = by_id.get(entry.id)
            if candidate is None or entry.id in seen:
                continue
            seen.add(entry.id)
            ranked.append(candidate.model_copy(
                update={"score": entry.score, "distance_km": entry.distance_km}
            ))

        return ranked

    @staticmethod
    def _fallback(candidates: List[Event], limit: int) -> List[Event]:
        return [
            event.model_copy(update={"score": None, "distance_km": None})
            for event in candidates[:limit]
        ]

    async def health_check(self) -> bool:
        try:
            return await asyncio.wait_for(self.engine.health_check(), timeout=self.timeout_seconds)
        except Exception as e:
            self.logger.warning("Ranking engine health check failed", error=str(e))
            return False
