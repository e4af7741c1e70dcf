"""Base repository class for common database operations."""

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, TypeVar, Generic, Union
from uuid import UUID
import asyncpg
import structlog

from eventradar.database.connections import DatabaseManager
from eventradar.errors import StorageError


logger = structlog.get_logger(__name__)

T = TypeVar('T')

# Failures of the storage engine or of the connection to it.
STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class BaseRepository(ABC, Generic[T]):
    """Base repository class providing common database operations.

    Every query method accepts an optional ``conn``. When given, the query
    runs on that connection (and inside whatever transaction the caller has
    open); otherwise a connection is borrowed from the pool for the call.
    """

    def __init__(self, db_manager: DatabaseManager, table_name: str):
        """
        Initialize base repository.

        Args:
            db_manager: Database manager instance
            table_name: Name of the database table
        """
        self.db_manager = db_manager
        self.table_name = table_name
        self.logger = logger.bind(component=f"{table_name}_repository")

    @property
    def select_clause(self) -> str:
        return f"SELECT * FROM {self.table_name}"

    @property
    def count_clause(self) -> str:
        return f"SELECT COUNT(*) FROM {self.table_name}"

    @property
    def id_column(self) -> str:
        return "id"

    @abstractmethod
    def _row_to_model(self, row: asyncpg.Record) -> T:
        """Convert database row to model instance."""
        pass

    @asynccontextmanager
    async def _connection(self, conn: Optional[asyncpg.Connection] = None):
        if conn is not None:
            yield conn
        else:
            async with self.db_manager.get_postgres_connection() as acquired:
                yield acquired

    def _storage_error(self, message: str, error: Exception, **context) -> StorageError:
        self.logger.error(message, table=self.table_name, error=str(error), **context)
        return StorageError(f"{message}: {error}")

    async def find_by_id(self,
                         id_value: Union[str, int, UUID],
                         conn: Optional[asyncpg.Connection] = None) -> Optional[T]:
        """
        Find a record by its ID.

        Args:
            id_value: The ID to search for
            conn: Optional connection to run on

        Returns:
            Model instance if found, None otherwise
        """
        try:
            async with self._connection(conn) as c:
                query = f"{self.select_clause} WHERE {self.id_column} = $1"
                row = await c.fetchrow(query, id_value)

                if row:
                    return self._row_to_model(row)
                return None

        except STORAGE_ERRORS as e:
            raise self._storage_error("Error finding record by ID", e, id=str(id_value)) from e

    async def find_all(self,
                       order_by: str = "id",
                       limit: int = 1000,
                       offset: int = 0) -> List[T]:
        """
        Find all records with pagination.

        Args:
            order_by: ORDER BY clause
            limit: Maximum number of records to return
            offset: Number of records to skip

        Returns:
            List of model instances
        """
        try:
            async with self._connection() as conn:
                query = f"{self.select_clause} ORDER BY {order_by} LIMIT $1 OFFSET $2"
                rows = await conn.fetch(query, limit, offset)

                return [self._row_to_model(row) for row in rows]

        except STORAGE_ERRORS as e:
            raise self._storage_error("Error finding all records", e) from e

    async def count(self, where_clause: str = "", params: List[Any] = None) -> int:
        """
        Count records in the table.

        Args:
            where_clause: Optional WHERE clause (without WHERE keyword)
            params: Parameters for the WHERE clause

        Returns:
            Number of records
        """
        try:
            params = params or []

            if where_clause:
                query = f"{self.count_clause} WHERE {where_clause}"
            else:
                query = self.count_clause

            async with self._connection() as conn:
                return await conn.fetchval(query, *params)

        except STORAGE_ERRORS as e:
            raise self._storage_error("Error counting records", e) from e

    async def find_by_criteria(self,
                               where_clause: str,
                               params: List[Any] = None,
                               order_by: str = "id",
                               limit: Optional[int] = None,
                               offset: int = 0,
                               conn: Optional[asyncpg.Connection] = None) -> List[T]:
        """
        Find records matching criteria.

        Args:
            where_clause: WHERE clause (without WHERE keyword)
            params: Parameters for the WHERE clause
            order_by: ORDER BY clause
            limit: Maximum number of records, unbounded when None
            offset: Number of records to skip
            conn: Optional connection to run on

        Returns:
            List of matching model instances
        """
        try:
            params = list(params or [])

            query = f"{self.select_clause} WHERE {where_clause} ORDER BY {order_by}"
            if limit is not None:
                query += f" LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"
                params.extend([limit, offset])

            async with self._connection(conn) as c:
                rows = await c.fetch(query, *params)

                return [self._row_to_model(row) for row in rows]

        except STORAGE_ERRORS as e:
            raise self._storage_error("Error finding records by criteria", e,
                                      where=where_clause) from e

    # Cache methods. The cache is an optimisation only: failures are logged
    # and reported as a miss.
    async def cache_set(self, key: str, value: Any, expiry: int = 3600) -> None:
        """
        Set a value in Redis cache.

        Args:
            key: Cache key
            value: Value to cache
            expiry: Expiry time in seconds
        """
        if not self.db_manager.cache_available:
            return
        try:
            redis_client = self.db_manager.get_redis_client()

            if isinstance(value, (dict, list)):
                value = json.dumps(value, default=str)

            await redis_client.setex(key, expiry, value)

        except Exception as e:
            self.logger.warning("Cache set failed", key=key, error=str(e))

    async def cache_get(self, key: str) -> Optional[Any]:
        """
        Get a value from Redis cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found
        """
        if not self.db_manager.cache_available:
            return None
        try:
            redis_client = self.db_manager.get_redis_client()
            value = await redis_client.get(key)

            if value is None:
                return None

            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value

        except Exception as e:
            self.logger.warning("Cache get failed", key=key, error=str(e))
            return None

    async def cache_clear_pattern(self, pattern: str) -> int:
        """
        Clear cache keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "events:upcoming:*")

        Returns:
            Number of keys deleted
        """
        if not self.db_manager.cache_available:
            return 0
        try:
            redis_client = self.db_manager.get_redis_client()
            keys = await redis_client.keys(pattern)

            if keys:
                deleted = await redis_client.delete(*keys)
                self.logger.info("Cache pattern cleared", pattern=pattern, deleted=deleted)
                return deleted

            return 0

        except Exception as e:
            self.logger.warning("Cache pattern clear failed", pattern=pattern, error=str(e))
            return 0


def decode_json(value: Any) -> Optional[Dict[str, Any]]:
    """Decode a jsonb column that asyncpg hands back as text."""
    if value is None or isinstance(value, dict):
        return value
    return json.loads(value)
