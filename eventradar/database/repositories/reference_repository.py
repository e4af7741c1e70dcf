"""Repositories for name-keyed reference data (categories and sources)."""

from typing import Optional, TypeVar
import asyncpg
import structlog

from eventradar.database.connections import DatabaseManager
from eventradar.database.repositories.base import BaseRepository, STORAGE_ERRORS
from eventradar.errors import StorageError
from eventradar.models.event import Category, Source


logger = structlog.get_logger(__name__)

R = TypeVar("R")


class NamedReferenceRepository(BaseRepository[R]):
    """Reference rows looked up by an exact, unique ``name``.

    The table must carry a UNIQUE constraint on ``name``; ``get_or_create``
    depends on it to stay duplicate-free under concurrent ingestion.
    """

    columns = "id, name"

    @property
    def select_clause(self) -> str:
        return f"SELECT {self.columns} FROM {self.table_name}"

    async def find_by_name(self,
                           name: str,
                           conn: Optional[asyncpg.Connection] = None) -> Optional[R]:
        """
        Find a row by exact (case-sensitive) name.

        Args:
            name: Name to look up
            conn: Optional connection to run on

        Returns:
            Model instance if found, None otherwise
        """
        try:
            async with self._connection(conn) as c:
                row = await c.fetchrow(f"{self.select_clause} WHERE name = $1", name)
                return self._row_to_model(row) if row else None

        except STORAGE_ERRORS as e:
            raise self._storage_error("Error finding record by name", e, name=name) from e

    async def get_or_create(self,
                            name: str,
                            conn: Optional[asyncpg.Connection] = None) -> R:
        """
        Return the row named ``name``, creating it with only the name set.

        Read first; if absent, insert with ``ON CONFLICT (name) DO NOTHING``.
        An empty insert result means a concurrent writer won the race, so the
        committed row is re-read instead of inserting a duplicate.

        Args:
            name: Name of the row
            conn: Optional connection to run on (and inside its transaction)

        Returns:
            The existing or newly created model instance
        """
        async with self._connection(conn) as c:
            existing = await self.find_by_name(name, c)
            if existing is not None:
                return existing

            try:
                row = await c.fetchrow(
                    f"""
                    INSERT INTO {self.table_name} (name)
                    VALUES ($1)
                    ON CONFLICT (name) DO NOTHING
                    RETURNING {self.columns}
                    """,
                    name,
                )
            except STORAGE_ERRORS as e:
                raise self._storage_error("Error creating record", e, name=name) from e

            if row is not None:
                created = self._row_to_model(row)
                self.logger.info("Record created", table=self.table_name, name=name,
                                 id=str(created.id))
                return created

            self.logger.info("Concurrent create detected, re-reading",
                             table=self.table_name, name=name)
            winner = await self.find_by_name(name, c)
            if winner is None:
                raise StorageError(
                    f"{self.table_name} row '{name}' conflicted on insert but could not be read back"
                )
            return winner


class CategoryRepository(NamedReferenceRepository[Category]):
    """Repository for event categories."""

    columns = "id, name, description, icon"

    def __init__(self, db_manager: DatabaseManager):
        super().__init__(db_manager, "categories")

    def _row_to_model(self, row: asyncpg.Record) -> Category:
        return Category(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            icon=row['icon'],
        )


class SourceRepository(NamedReferenceRepository[Source]):
    """Repository for ingestion sources."""

    def __init__(self, db_manager: DatabaseManager):
        super().__init__(db_manager, "sources")

    def _row_to_model(self, row: asyncpg.Record) -> Source:
        return Source(id=row['id'], name=row['name'])
