"""Database connection management for eventradar."""

import asyncio
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager
import asyncpg
import redis.asyncio as redis
import structlog

from eventradar.database.schema import SCHEMA_STATEMENTS
from eventradar.errors import StorageError
from eventradar.models.config import RadarConfig


logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Manages the PostgreSQL pool and the Redis cache client."""

    def __init__(self, config: RadarConfig):
        """
        Initialize database manager with configuration.

        Args:
            config: Application configuration containing database settings
        """
        self.config = config
        self.logger = logger.bind(component="database_manager")

        self._postgres_pool: Optional[asyncpg.Pool] = None
        self._redis_client: Optional[redis.Redis] = None

        self._postgres_pool_config = {
            "min_size": max(1, config.db_pool_size // 2),
            "max_size": config.db_pool_size,
            "max_inactive_connection_lifetime": 300,
            "timeout": config.db_pool_timeout,
            "command_timeout": 60,
            "server_settings": {
                "application_name": "eventradar",
                "timezone": "UTC"
            }
        }

        self._redis_pool_config = {
            "max_connections": config.redis_pool_size,
            "retry_on_timeout": True,
            "health_check_interval": 30
        }

    async def initialize(self) -> None:
        """Initialize database connections and pools."""
        try:
            self.logger.info("Initializing database connections")

            await self._initialize_postgres()
            if self.config.cache_enabled:
                await self._initialize_redis()

            if self.config.db_auto_create_schema:
                await self.ensure_schema()

            self.logger.info(
                "Database connections initialized successfully",
                postgres_pool_size=self._postgres_pool.get_size() if self._postgres_pool else 0,
                redis_connected=self._redis_client is not None
            )

        except Exception as e:
            self.logger.error("Failed to initialize database connections", error=str(e))
            await self.cleanup()
            raise

    async def _initialize_postgres(self) -> None:
        """Initialize PostgreSQL connection pool."""
        self.logger.info("Creating PostgreSQL connection pool",
                         database_url=self._mask_password(self.config.database_url))

        self._postgres_pool = await asyncpg.create_pool(
            self.config.database_url,
            **self._postgres_pool_config
        )

    async def _initialize_redis(self) -> None:
        """Initialize Redis client with connection pool."""
        self.logger.info("Creating Redis connection",
                         redis_url=self._mask_password(self.config.redis_url))

        self._redis_client = redis.from_url(
            self.config.redis_url,
            **self._redis_pool_config,
            decode_responses=True
        )

    async def ensure_schema(self) -> None:
        """Create tables, the unique name constraints and indexes if missing."""
        async with self.get_postgres_transaction() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        self.logger.info("Database schema ensured", statements=len(SCHEMA_STATEMENTS))

    async def cleanup(self) -> None:
        """Clean up database connections and pools."""
        self.logger.info("Cleaning up database connections")

        if self._redis_client:
            try:
                await self._redis_client.aclose()
            except Exception as e:
                self.logger.error("Error closing Redis client", error=str(e))
            finally:
                self._redis_client = None

        if self._postgres_pool:
            try:
                await self._postgres_pool.close()
            except Exception as e:
                self.logger.error("Error closing PostgreSQL pool", error=str(e))
            finally:
                self._postgres_pool = None

    @asynccontextmanager
    async def get_postgres_connection(self):
        """
        Get a PostgreSQL connection from the pool.

        Yields:
            asyncpg.Connection: Database connection

        Raises:
            StorageError: If the pool is missing or a connection cannot be acquired
        """
        if not self._postgres_pool:
            raise StorageError("PostgreSQL pool not initialized")

        try:
            connection = await self._postgres_pool.acquire()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            self.logger.error("Could not acquire database connection", error=str(e))
            raise StorageError(f"Database unavailable: {e}") from e

        try:
            yield connection
        finally:
            await self._postgres_pool.release(connection)

    @asynccontextmanager
    async def get_postgres_transaction(self):
        """
        Get a PostgreSQL transaction from the pool.

        Yields:
            asyncpg.Connection: Database connection with active transaction
        """
        async with self.get_postgres_connection() as conn:
            async with conn.transaction():
                yield conn

    @property
    def cache_available(self) -> bool:
        return self._redis_client is not None

    def get_redis_client(self) -> redis.Redis:
        """
        Get the Redis client.

        Raises:
            RuntimeError: If Redis client not initialized
        """
        if not self._redis_client:
            raise RuntimeError("Redis client not initialized")
        return self._redis_client

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on all database connections."""
        health = {
            "postgres": {"status": "unknown"},
            "redis": {"status": "unknown"},
            "overall": "unknown"
        }

        try:
            if self._postgres_pool:
                async with self.get_postgres_connection() as conn:
                    await conn.fetchval("SELECT 1")
                health["postgres"] = {"status": "healthy"}
            else:
                health["postgres"] = {"status": "not_initialized"}
        except Exception as e:
            health["postgres"] = {"status": "unhealthy", "error": str(e)}

        try:
            if self._redis_client:
                await self._redis_client.ping()
                health["redis"] = {"status": "healthy"}
            else:
                health["redis"] = {"status": "disabled"}
        except Exception as e:
            health["redis"] = {"status": "unhealthy", "error": str(e)}

        # The cache is optional: only storage decides between healthy and unhealthy.
        if health["postgres"]["status"] != "healthy":
            health["overall"] = "unhealthy"
        elif health["redis"]["status"] in ("healthy", "disabled"):
            health["overall"] = "healthy"
        else:
            health["overall"] = "degraded"

        return health

    def _mask_password(self, database_url: str) -> str:
        """Mask password in a connection URL for logging."""
        if "://" not in database_url or "@" not in database_url:
            return database_url
        scheme, rest = database_url.split("://", 1)
        auth, host_part = rest.rsplit("@", 1)
        if ":" in auth:
            user, _ = auth.split(":", 1)
            return f"{scheme}://{user}:***@{host_part}"
        return database_url
