"""
Caller-facing operations of the federation core.

Each call borrows one pooled connection for its duration and returns fresh
UserRecord projections. Nothing is cached between calls.
"""

import logging
from typing import TYPE_CHECKING, Any

from userstore.connectors.authuser import AuthUserConnector
from userstore.manager.identity_resolver import IdentityResolver, Resolution
from userstore.models.user_record import UserRecord, map_user_record
from userstore.utils import passwords

if TYPE_CHECKING:
    from userstore.core.config import Settings
    from userstore.core.database_pool import DatabasePool

logger = logging.getLogger(__name__)


class UserStorageService:
    """Read-only user lookup and password verification over the authuser source."""

    def __init__(self, db_pool: "DatabasePool", settings: "Settings") -> None:
        self.db_pool = db_pool
        self.settings = settings

    def _connector(self) -> AuthUserConnector:
        return AuthUserConnector.from_settings(self.db_pool, self.settings)

    async def resolve_by_id(self, identifier: str) -> Resolution:
        logger.debug(f"resolve_by_id() called with: {identifier}")
        async with self._connector() as connector:
            return await IdentityResolver(connector).resolve(identifier)

    async def resolve_by_username(self, username: str) -> UserRecord | None:
        logger.debug(f"resolve_by_username() called with: {username}")
        async with self._connector() as connector:
            row = await connector.find_by_username(username)
        return map_user_record(row) if row is not None else None

    async def resolve_by_email(self, email: str) -> UserRecord | None:
        logger.debug(f"resolve_by_email() called with: {email}")
        async with self._connector() as connector:
            row = await connector.find_by_email(email)
        return map_user_record(row) if row is not None else None

    async def search(self, term: str | None, offset: int | None = None, limit: int | None = None) -> list[UserRecord]:
        logger.debug(f"search() called with: '{term}' (offset={offset}, limit={limit})")
        async with self._connector() as connector:
            rows = await connector.search(term, offset=offset, limit=limit)
        return [map_user_record(row) for row in rows]

    async def list_all(self, offset: int | None = None, limit: int | None = None) -> list[UserRecord]:
        async with self._connector() as connector:
            rows = await connector.list_all(offset=offset, limit=limit)
        return [map_user_record(row) for row in rows]

    async def count(self) -> int:
        async with self._connector() as connector:
            return await connector.count()

    async def health_check(self) -> bool:
        """Check that a connection can be borrowed and the source answers."""
        try:
            async with self._connector() as connector:
                return await connector.test_connection()
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    @staticmethod
    def verify_password(record: Any, candidate: str | None) -> bool:
        """Check a candidate password against a UserRecord or a host cache entry. Never raises."""
        return passwords.verify_password(record, candidate)

    @staticmethod
    def is_configured_for(record: Any, credential_type: str = passwords.PASSWORD_CREDENTIAL_TYPE) -> bool:
        return passwords.is_configured_for(record, credential_type)

    @staticmethod
    def supports_credential_type(credential_type: str) -> bool:
        return passwords.supports_credential_type(credential_type)
