"""
Read-only connector for the authuser table and its restricted views.

Every query is a parameterized SELECT. The only interpolated SQL fragment is
the table/view name (and the legacy id column), which come from deployment
configuration, are validated as PostgreSQL identifiers and are always quoted.
"""

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

import asyncpg

from userstore.core.exceptions import AuthUserUnavailableError, AuthUserValidationError

if TYPE_CHECKING:
    from userstore.core.config import Settings
    from userstore.core.database_pool import DatabasePool

logger = logging.getLogger(__name__)

SEARCH_COLUMNS = ("username", "email", "firstname", "lastname")

# Host admin consoles send "*" to mean "everyone"
MATCH_ALL_TERMS = ("", "*")

DATA_UNAVAILABLE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class AuthUserConnector:
    """Connector for reading user rows from the configured authuser source."""

    def __init__(
        self,
        db_pool: "DatabasePool",
        table_name: str = "v_oidc_users",
        legacy_id_column: str | None = None,
        provider: str | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            db_pool: DatabasePool instance to use for connections
            table_name: Table or view to read, optionally schema-qualified
            legacy_id_column: Column holding legacy ids; None or empty disables legacy lookups
            provider: When set, only rows with this provider are visible

        Raises:
            AuthUserValidationError: If the table or column name is not a valid identifier
        """
        self.db_pool = db_pool
        self.table_name = self.validate_table_name(table_name)
        self.legacy_id_column = (
            self.validate_identifier(legacy_id_column, "legacy id column") if legacy_id_column else None
        )
        self.provider = provider
        self.conn: asyncpg.Connection | None = None
        self._acquired = False

    @classmethod
    def from_settings(cls, db_pool: "DatabasePool", settings: "Settings") -> "AuthUserConnector":
        return cls(
            db_pool,
            table_name=settings.DB_AUTHUSER_TABLE,
            legacy_id_column=settings.DB_LEGACY_ID_COLUMN or None,
            provider=settings.OBP_AUTHUSER_PROVIDER,
        )

    async def acquire_connection(self) -> None:
        """Acquire a connection from the pool."""
        if not self._acquired:
            self.conn = await self.db_pool.acquire()
            self._acquired = True
            logger.debug("Acquired connection from pool")

    async def close(self) -> None:
        """Return the connection to the pool."""
        if self.conn and self._acquired:
            await self.db_pool.release(self.conn)
            logger.debug("Released connection back to pool")
            self.conn = None
            self._acquired = False

    async def __aenter__(self) -> "AuthUserConnector":
        await self.acquire_connection()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Identifier validation

    @staticmethod
    def validate_identifier(identifier: str, identifier_type: str = "identifier") -> str:
        """Validate a single SQL identifier (table, view, schema or column name).

        Args:
            identifier: The identifier to validate
            identifier_type: Type of identifier for error messages

        Returns:
            Validated identifier

        Raises:
            AuthUserValidationError: If identifier is invalid
        """
        if not identifier:
            raise AuthUserValidationError(f"{identifier_type} cannot be empty")

        # PostgreSQL truncates identifiers at 63 bytes
        if len(identifier) > 63:
            raise AuthUserValidationError(f"{identifier_type} cannot exceed 63 characters")

        if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_$]*$", identifier):
            raise AuthUserValidationError(
                f"{identifier_type} '{identifier}' contains invalid characters. "
                "Must start with letter/underscore and contain only letters, digits, underscores, and dollar signs."
            )

        reserved_words = {
            "select",
            "from",
            "where",
            "table",
            "view",
            "user",
            "order",
            "group",
            "limit",
            "offset",
            "union",
            "and",
            "or",
            "not",
            "null",
            "true",
            "false",
        }
        if identifier.lower() in reserved_words:
            raise AuthUserValidationError(f"{identifier_type} '{identifier}' is a PostgreSQL reserved word")

        return identifier

    @classmethod
    def validate_table_name(cls, table_name: str) -> str:
        """Validate a table or view name, optionally qualified with a schema."""
        if not table_name:
            raise AuthUserValidationError("table name cannot be empty")

        parts = table_name.split(".")
        if len(parts) > 2:
            raise AuthUserValidationError(f"table name '{table_name}' must be <name> or <schema>.<name>")

        for part, kind in zip(parts, ("schema", "table")[-len(parts) :]):
            cls.validate_identifier(part, f"{kind} name")

        return table_name

    @staticmethod
    def _quote_identifier(identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    @property
    def quoted_table(self) -> str:
        return ".".join(self._quote_identifier(part) for part in self.table_name.split("."))

    @staticmethod
    def escape_like(term: str) -> str:
        r"""Escape LIKE wildcards so the term is matched literally (backslash is the default escape)."""
        return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    # Query building

    def _get_connection(self) -> asyncpg.Connection:
        if self.conn is None:
            raise AuthUserUnavailableError("No active connection. Use within async context manager.")
        return self.conn

    def build_select(
        self,
        conditions: list[str] | None = None,
        args: list[Any] | None = None,
        order_by: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> tuple[str, list[Any]]:
        """Build a SELECT over the configured source.

        Conditions must reference their values as ``$n`` placeholders matching
        ``args``. The provider filter and pagination are appended as further
        bound parameters. Negative or None offset/limit leave the result unrestricted.

        Returns:
            Tuple of (sql, args)
        """
        conditions = list(conditions or [])
        args = list(args or [])

        if self.provider is not None:
            args.append(self.provider)
            conditions.append(f"provider = ${len(args)}")

        sql = f"SELECT * FROM {self.quoted_table}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit is not None and limit >= 0:
            args.append(limit)
            sql += f" LIMIT ${len(args)}"
        if offset is not None and offset >= 0:
            args.append(offset)
            sql += f" OFFSET ${len(args)}"

        return sql, args

    async def _fetchrow(self, operation: str, sql: str, args: list[Any]) -> asyncpg.Record | None:
        try:
            row = await self._get_connection().fetchrow(sql, *args)
        except DATA_UNAVAILABLE_ERRORS as e:
            logger.error(f"{operation} failed on {self.table_name}: {type(e).__name__}: {e}")
            raise AuthUserUnavailableError(f"{operation} failed: {e}") from e
        logger.debug(f"{operation}: {'1 row' if row is not None else 'no rows'}")
        return row

    async def _fetch(self, operation: str, sql: str, args: list[Any]) -> list[asyncpg.Record]:
        try:
            rows = await self._get_connection().fetch(sql, *args)
        except DATA_UNAVAILABLE_ERRORS as e:
            logger.error(f"{operation} failed on {self.table_name}: {type(e).__name__}: {e}")
            raise AuthUserUnavailableError(f"{operation} failed: {e}") from e
        logger.debug(f"{operation}: {len(rows)} rows")
        return list(rows)

    # Lookups

    async def find_by_id(self, user_id: int) -> asyncpg.Record | None:
        sql, args = self.build_select(["id = $1"], [user_id])
        return await self._fetchrow("find_by_id", sql, args)

    async def find_by_username(self, username: str) -> asyncpg.Record | None:
        sql, args = self.build_select(["username = $1"], [username], order_by="id ASC")
        return await self._fetchrow("find_by_username", sql, args)

    async def find_by_email(self, email: str) -> asyncpg.Record | None:
        sql, args = self.build_select(["email = $1"], [email], order_by="id ASC")
        return await self._fetchrow("find_by_email", sql, args)

    async def find_by_legacy_id(self, legacy_id: str) -> asyncpg.Record | None:
        """Look up a row by its legacy identifier.

        Returns None without querying when legacy lookups are disabled.
        """
        if self.legacy_id_column is None:
            logger.debug("Legacy id lookups disabled; skipping find_by_legacy_id")
            return None

        column = self._quote_identifier(self.legacy_id_column)
        sql, args = self.build_select([f"{column} = $1"], [legacy_id], order_by="id ASC")
        return await self._fetchrow("find_by_legacy_id", sql, args)

    async def search(self, term: str | None, offset: int | None = None, limit: int | None = None) -> list[asyncpg.Record]:
        """Case-insensitive substring search over username, email, first and last name.

        Results are ordered by username ascending. An empty term or "*" lists everyone.
        """
        if term is None or term.strip() in MATCH_ALL_TERMS:
            return await self.list_all(offset=offset, limit=limit)

        pattern = f"%{self.escape_like(term)}%"
        match = " OR ".join(f"{column} ILIKE $1" for column in SEARCH_COLUMNS)
        sql, args = self.build_select([f"({match})"], [pattern], order_by="username ASC", offset=offset, limit=limit)
        return await self._fetch("search", sql, args)

    async def list_all(self, offset: int | None = None, limit: int | None = None) -> list[asyncpg.Record]:
        sql, args = self.build_select(order_by="username ASC", offset=offset, limit=limit)
        return await self._fetch("list_all", sql, args)

    async def count(self) -> int:
        """Count the rows visible in the configured source."""
        sql, args = self.build_select()
        sql = sql.replace("SELECT *", "SELECT COUNT(*)", 1)
        try:
            total = await self._get_connection().fetchval(sql, *args)
        except DATA_UNAVAILABLE_ERRORS as e:
            logger.error(f"count failed on {self.table_name}: {type(e).__name__}: {e}")
            raise AuthUserUnavailableError(f"count failed: {e}") from e
        return int(total or 0)

    async def test_connection(self) -> bool:
        """Check that the source answers a trivial query.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            await self._get_connection().fetchval("SELECT 1")
            logger.info("Database connection test successful")
            return True
        except (AuthUserUnavailableError, *DATA_UNAVAILABLE_ERRORS) as e:
            logger.warning(f"Database connection test failed: {e}")
            return False


async def create_authuser_connector(db_pool: "DatabasePool", settings: "Settings") -> AuthUserConnector:
    """Factory function to create an AuthUserConnector with an acquired connection.

    Args:
        db_pool: DatabasePool instance to use for connections
        settings: Settings providing the source table, legacy column and provider filter

    Returns:
        AuthUserConnector instance with connection acquired from pool
    """
    connector = AuthUserConnector.from_settings(db_pool, settings)
    await connector.acquire_connection()
    return connector
