"""
Database connection pool management.

This module provides a DatabasePool class that manages the asyncpg connection
pool used to read the authuser source, plus a retrying initializer for
application startup.
"""

import asyncio
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

import asyncpg
from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from userstore.core.exceptions import DatabasePoolError

if TYPE_CHECKING:
    from userstore.core.config import Settings

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SECONDS = 30.0


class DatabasePool:
    """Manages a PostgreSQL connection pool with lifecycle management."""

    def __init__(
        self,
        dsn: str,
        user: str,
        password: str | None,
        min_size: int = 1,
        max_size: int = 10,
        connect_timeout: float = 10.0,
        command_timeout: float = 30.0,
        application_name: str = "obp-keycloak-provider",
    ) -> None:
        """Initialize the database pool configuration.

        Args:
            dsn: PostgreSQL connection URL (postgresql://host:port/database)
            user: Database username
            password: Database password
            min_size: Minimum pool size
            max_size: Maximum pool size
            connect_timeout: Seconds to wait for a new connection
            command_timeout: Seconds a single statement may run
            application_name: Reported to PostgreSQL as application_name
        """
        self.dsn = dsn
        self.user = user
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.application_name = application_name
        self.pool: asyncpg.Pool | None = None
        self._initialized = False
        # Acquisition timestamps keyed by id(connection), for leak reporting
        self._active_connections: dict[int, float] = {}
        self._tracking_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DatabasePool":
        return cls(
            dsn=settings.DB_URL,
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            connect_timeout=settings.DB_CONNECT_TIMEOUT,
            command_timeout=settings.DB_COMMAND_TIMEOUT,
            application_name=settings.DB_APPLICATION_NAME,
        )

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return

        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.dsn,
                user=self.user,
                password=self.password,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.connect_timeout,
                command_timeout=self.command_timeout,
                server_settings={"application_name": self.application_name},
            )
            self._initialized = True
            logger.info(f"Database pool initialized (min={self.min_size}, max={self.max_size}) for {self.dsn}")
        except Exception as e:
            logger.exception(f"Failed to initialize database pool for {self.dsn}")
            raise DatabasePoolError(f"Pool initialization failed: {e}") from e

    async def close(self) -> None:
        """Close the connection pool."""
        if not self._initialized or self.pool is None:
            logger.warning("Database pool not initialized or already closed")
            return

        with self._tracking_lock:
            if self._active_connections:
                logger.error(
                    f"CONNECTION LEAK DETECTED! Pool ({self.dsn}) has {len(self._active_connections)} "
                    f"unreleased connections. Closing may block until they are returned."
                )

        try:
            await self.pool.close()
            self.pool = None
            self._initialized = False
            with self._tracking_lock:
                self._active_connections.clear()
            logger.info(f"Database pool closed successfully for {self.dsn}")
        except Exception as e:
            logger.exception(f"Error closing database pool for {self.dsn}")
            raise DatabasePoolError(f"Pool closure failed: {e}") from e

    async def acquire(self) -> asyncpg.Connection:
        """Acquire a connection from the pool.

        Returns:
            Database connection from the pool

        Raises:
            DatabasePoolError: If pool not initialized or acquisition fails
        """
        if not self._initialized or self.pool is None:
            raise DatabasePoolError("Database pool not initialized. Call initialize() first.")

        try:
            conn = await asyncio.wait_for(self.pool.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.error(
                f"Connection acquisition timeout ({ACQUIRE_TIMEOUT_SECONDS:.0f}s) from pool ({self.dsn}). "
                f"This may indicate database issues or pool exhaustion."
            )
            raise DatabasePoolError(f"Connection acquisition timeout from pool ({self.dsn})")
        except Exception as e:
            logger.exception(f"Failed to acquire connection from pool ({self.dsn})")
            raise DatabasePoolError(f"Connection acquisition failed: {e}") from e

        with self._tracking_lock:
            self._active_connections[id(conn)] = time.time()
            active = len(self._active_connections)
        logger.debug(f"Acquired connection {id(conn)} from pool ({self.dsn}). Active connections: {active}")
        return conn

    async def release(self, connection: asyncpg.Connection) -> None:
        """Release a connection back to the pool.

        Args:
            connection: Connection to release back to the pool

        Raises:
            DatabasePoolError: If pool not initialized or release fails
        """
        if not self._initialized or self.pool is None:
            raise DatabasePoolError("Database pool not initialized")

        with self._tracking_lock:
            acquired_at = self._active_connections.pop(id(connection), None)

        if acquired_at is None:
            logger.warning(f"Released untracked connection {id(connection)} to pool ({self.dsn})")
        else:
            logger.debug(f"Released connection {id(connection)} (held for {time.time() - acquired_at:.2f}s)")

        try:
            await self.pool.release(connection)
        except Exception as e:
            logger.exception(f"Failed to release connection to pool ({self.dsn})")
            raise DatabasePoolError(f"Connection release failed: {e}") from e

    @property
    def is_initialized(self) -> bool:
        """Check if the pool is initialized."""
        return self._initialized

    def get_active_connections_count(self) -> int:
        """Get the number of active (unreleased) connections being tracked."""
        with self._tracking_lock:
            return len(self._active_connections)

    def get_connection_stats(self) -> dict[str, Any]:
        """Get connection statistics for monitoring."""
        if not self.pool:
            return {"error": "pool not initialized"}

        return {
            "pool_size": self.pool.get_size(),
            "min_size": self.pool.get_min_size(),
            "max_size": self.pool.get_max_size(),
            "idle_count": self.pool.get_idle_size(),
            "tracked_active": self.get_active_connections_count(),
        }

    def __repr__(self) -> str:
        status = "initialized" if self._initialized else "not initialized"
        return f"DatabasePool(dsn={self.dsn}, {status}, active={self.get_active_connections_count()})"


@retry(
    stop=stop_after_attempt(6),
    wait=wait_exponential(multiplier=2, min=2, max=30),  # 2s, 4s, 8s, 16s, 30s
    retry=retry_if_exception_type(
        (
            asyncpg.exceptions.PostgresError,
            asyncpg.exceptions.InterfaceError,
            ConnectionError,
            OSError,
            DatabasePoolError,
            asyncio.TimeoutError,
        )
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    after=after_log(logger, logging.INFO),
    reraise=True,
)
async def initialize_database_pool_with_retry(pool: DatabasePool) -> None:
    """Initialize the pool, retrying with exponential backoff while the database is unreachable."""
    logger.info(f"Attempting to initialize database pool ({pool.dsn})")
    await pool.initialize()
