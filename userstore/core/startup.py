"""
Startup and shutdown of the federation core.

Builds the settings, validates them, opens the connection pool (retrying while
the database comes up) and hands back a ready UserStorageService.
"""

import logging

from userstore.core.config import Settings, load_settings, validate_configuration
from userstore.core.database_pool import DatabasePool, initialize_database_pool_with_retry
from userstore.core.exceptions import DatabasePoolError
from userstore.services.user_storage_service import UserStorageService

logger = logging.getLogger(__name__)


async def create_user_storage_service(settings: Settings | None = None) -> UserStorageService:
    """
    Create a UserStorageService with an initialized connection pool.

    Args:
        settings: Explicit settings; loaded from the environment when omitted

    Returns:
        Service ready to answer lookups

    Raises:
        ConfigurationError: If the configuration is invalid
        DatabasePoolError: If the pool cannot be created after all retries
    """
    if settings is None:
        settings = load_settings()

    logger.info("Validating runtime database configuration")
    validate_configuration(settings)

    pool = DatabasePool.from_settings(settings)
    try:
        await initialize_database_pool_with_retry(pool)
    except Exception as e:
        logger.error(f"CRITICAL: Failed to initialize database pool after all retries: {e}")
        raise DatabasePoolError(f"Database pool initialization failed after all retries: {e}") from e

    logger.info(f"User storage service ready (source: {settings.DB_AUTHUSER_TABLE})")
    return UserStorageService(pool, settings)


async def close_user_storage_service(service: UserStorageService) -> None:
    """Close the connection pool owned by the service."""
    logger.info("Closing user storage service")
    await service.db_pool.close()
