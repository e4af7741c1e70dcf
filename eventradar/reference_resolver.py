"""Get-or-create resolution of category and source references at ingest time."""

from typing import Optional

import asyncpg
import structlog

from eventradar.database.repositories import CategoryRepository, SourceRepository
from eventradar.errors import ValidationError
from eventradar.models.event import Category, Source


logger = structlog.get_logger(__name__)


class ReferenceDataResolver:
    """Resolves category and source names to their (possibly new) rows."""

    def __init__(self, categories: CategoryRepository, sources: SourceRepository):
        self.categories = categories
        self.sources = sources
        self.logger = logger.bind(component="reference_resolver")

    async def resolve_category(self, name: str,
                               conn: Optional[asyncpg.Connection] = None) -> Category:
        """Return the category named ``name``, creating it on first use."""
        return await self.categories.get_or_create(self._require_name(name, "Category"), conn)

    async def resolve_source(self, name: str,
                             conn: Optional[asyncpg.Connection] = None) -> Source:
        """Return the source named ``name``, creating it on first use."""
        return await self.sources.get_or_create(self._require_name(name, "Source"), conn)

    @staticmethod
    def _require_name(name: Optional[str], kind: str) -> str:
        # Names are exact keys: no trimming or case folding.
        if name is None or not name.strip():
            raise ValidationError([f"{kind} name must not be blank"])
        return name
