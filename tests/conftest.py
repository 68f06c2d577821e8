"""Shared fixtures: an in-memory stand-in for the authuser source."""

import re
from datetime import datetime

import asyncpg
import pytest

from userstore.connectors.authuser import SEARCH_COLUMNS
from userstore.core.config import Settings
from userstore.models.user_record import RESTRICTED_VIEW_COLUMNS

_EQUALS = re.compile(r'"?(\w+)"? = \$(\d+)')
_ILIKE = re.compile(r"ILIKE \$(\d+)")
_ORDER = re.compile(r"ORDER BY (\w+) ASC")
_LIMIT = re.compile(r"LIMIT \$(\d+)")
_OFFSET = re.compile(r"OFFSET \$(\d+)")


def _unescape_like(pattern: str) -> str:
    return re.sub(r"\\(.)", r"\1", pattern[1:-1]).lower()


class FakeConnection:
    """Answers the SELECTs built by AuthUserConnector from a list of row dicts."""

    def __init__(self, rows: list[dict]):
        self.rows = rows
        self.queries: list[tuple[str, tuple]] = []
        self.error: Exception | None = None

    def _select(self, sql: str, args: tuple) -> list[dict]:
        self.queries.append((sql, args))
        if self.error is not None:
            raise self.error

        rows = list(self.rows)
        where = sql.split(" WHERE ", 1)[1] if " WHERE " in sql else ""
        where = where.split(" ORDER BY ")[0].split(" LIMIT ")[0].split(" OFFSET ")[0]

        ilike = _ILIKE.search(where)
        if ilike:
            needle = _unescape_like(args[int(ilike.group(1)) - 1])
            rows = [
                row for row in rows if any(needle in (row.get(column) or "").lower() for column in SEARCH_COLUMNS)
            ]

        # Filtering on a column the source lacks fails the way PostgreSQL does
        columns = {column for row in self.rows for column in row}
        for column, position in _EQUALS.findall(where):
            if self.rows and column not in columns:
                raise asyncpg.exceptions.UndefinedColumnError(f'column "{column}" does not exist')
            value = args[int(position) - 1]
            rows = [row for row in rows if row.get(column) == value]

        order = _ORDER.search(sql)
        if order:
            column = order.group(1)
            rows.sort(key=lambda row: (row.get(column) is None, row.get(column)))

        offset = _OFFSET.search(sql)
        if offset:
            rows = rows[args[int(offset.group(1)) - 1] :]
        limit = _LIMIT.search(sql)
        if limit:
            rows = rows[: args[int(limit.group(1)) - 1]]

        return rows

    async def fetch(self, sql: str, *args):
        return self._select(sql, args)

    async def fetchrow(self, sql: str, *args):
        rows = self._select(sql, args)
        return rows[0] if rows else None

    async def fetchval(self, sql: str, *args):
        if sql == "SELECT 1":
            self.queries.append((sql, args))
            if self.error is not None:
                raise self.error
            return 1
        rows = self._select(sql.replace("SELECT COUNT(*)", "SELECT *", 1), args)
        return len(rows)


class FakePool:
    """Hands out a single FakeConnection and counts acquire/release calls."""

    def __init__(self, connection: FakeConnection):
        self.connection = connection
        self.acquired = 0
        self.released = 0

    async def acquire(self):
        self.acquired += 1
        return self.connection

    async def release(self, connection) -> None:
        self.released += 1

    async def close(self) -> None:
        pass


@pytest.fixture
def authuser_rows() -> list[dict]:
    """Rows as the raw authuser table returns them."""
    return [
        {
            "id": 1,
            "uniqueid": None,
            "username": "adoe",
            "firstname": "Alice",
            "lastname": "Doe",
            "email": "alice@example.com",
            "password_pw": "b;$2a$10$SGIAR0RtthMlgJK9DhElBekIvo5ulZ26GBZJQ",
            "password_slt": "nXiDOLye3CtjzEke",
            "provider": "http://127.0.0.1:8080",
            "validated": True,
            "createdat": datetime(2023, 5, 1, 9, 30),
            "updatedat": datetime(2024, 1, 15, 12, 0),
            "locale": "en_GB",
            "timezone": "Europe/London",
            "superuser": False,
            "passwordshouldbechanged": False,
            "user_c": 101,
        },
        {
            "id": 2,
            "uniqueid": None,
            "username": "jsmith",
            "firstname": "John",
            "lastname": "Smith",
            "email": "john@example.com",
            "password_pw": None,
            "password_slt": None,
            "provider": "http://127.0.0.1:8080",
            "validated": True,
            "createdat": None,
            "updatedat": None,
            "locale": None,
            "timezone": None,
            "superuser": None,
            "passwordshouldbechanged": None,
            "user_c": 102,
        },
        {
            "id": 7,
            "uniqueid": "LEGACY_ABC123",
            "username": "mlegacy",
            "firstname": "Mary",
            "lastname": "Legacy",
            "email": "mary@example.com",
            "password_pw": None,
            "password_slt": None,
            "provider": "legacy-portal",
            "validated": False,
            "createdat": None,
            "updatedat": None,
            "locale": None,
            "timezone": None,
            "superuser": True,
            "passwordshouldbechanged": True,
            "user_c": 107,
        },
        {
            "id": 3,
            "uniqueid": None,
            "username": "scorp",
            "firstname": "Acme",
            "lastname": "Holdings",
            "email": "smithson@x.com",
            "password_pw": None,
            "password_slt": None,
            "provider": "http://127.0.0.1:8080",
            "validated": True,
            "createdat": None,
            "updatedat": None,
            "locale": None,
            "timezone": None,
            "superuser": False,
            "passwordshouldbechanged": False,
            "user_c": 103,
        },
        {
            "id": 42,
            "uniqueid": None,
            "username": "zanswer",
            "firstname": "Zed",
            "lastname": "Answer",
            "email": "zed@example.com",
            "password_pw": None,
            "password_slt": None,
            "provider": "http://127.0.0.1:8080",
            "validated": True,
            "createdat": None,
            "updatedat": None,
            "locale": None,
            "timezone": None,
            "superuser": False,
            "passwordshouldbechanged": False,
            "user_c": 142,
        },
    ]


@pytest.fixture
def view_rows(authuser_rows) -> list[dict]:
    """The same users as the v_oidc_users view exposes them: validated only, restricted columns."""
    return [
        {column: value for column, value in row.items() if column in RESTRICTED_VIEW_COLUMNS}
        for row in authuser_rows
        if row["validated"]
    ]


@pytest.fixture
def fake_connection(authuser_rows) -> FakeConnection:
    return FakeConnection(authuser_rows)


@pytest.fixture
def fake_pool(fake_connection) -> FakePool:
    return FakePool(fake_connection)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DB_URL="postgresql://localhost:5434/obp_mapped",
        DB_USER="oidc_user",
        DB_PASSWORD="secret",
        DB_AUTHUSER_TABLE="authuser",
        DB_LEGACY_ID_COLUMN="uniqueid",
        OBP_AUTHUSER_PROVIDER=None,
    )
