"""
User records projected from the authuser table or one of its restricted views.

A record is built fresh for every lookup and never written back: the external
system that owns ``authuser`` is the only writer.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from userstore.core.exceptions import UserRecordMappingError

# Columns exposed by the v_oidc_users view
RESTRICTED_VIEW_COLUMNS = (
    "id",
    "username",
    "firstname",
    "lastname",
    "email",
    "validated",
    "provider",
    "password_pw",
    "password_slt",
    "createdat",
    "updatedat",
)

# Columns only the raw authuser table carries
FULL_TABLE_ONLY_COLUMNS = (
    "uniqueid",
    "locale",
    "timezone",
    "superuser",
    "passwordshouldbechanged",
    "user_c",
)


@dataclass(frozen=True)
class UserRecord:
    """One external identity as read from the user source."""

    id: int
    legacy_id: str | None = None
    username: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    password_hash: str | None = None
    password_salt: str | None = None
    provider: str | None = None
    validated: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    locale: str | None = None
    timezone: str | None = None
    superuser: bool = False
    password_should_be_changed: bool = False
    user_c: int | None = None

    @property
    def external_id(self) -> str:
        """Canonical identifier to hand to the host; always the primary key."""
        return str(self.id)

    @property
    def email_verified(self) -> bool:
        return self.validated

    @property
    def enabled(self) -> bool:
        return self.validated

    def attributes(self) -> dict[str, list[str]]:
        """Profile attributes in the host's multi-valued attribute shape."""
        attributes: dict[str, list[str]] = {}
        for name, value in (
            ("firstName", self.first_name),
            ("lastName", self.last_name),
            ("email", self.email),
            ("username", self.username),
            ("provider", self.provider),
        ):
            if value is not None:
                attributes[name] = [value]

        attributes["validated"] = ["true" if self.validated else "false"]

        if self.created_at is not None:
            attributes["createdAt"] = [self.created_at.isoformat()]
        if self.updated_at is not None:
            attributes["updatedAt"] = [self.updated_at.isoformat()]

        return attributes

    def attribute(self, name: str) -> list[str]:
        return self.attributes().get(name, [])

    def __repr__(self) -> str:
        # Never includes hash or salt
        return (
            f"UserRecord(id={self.id}, legacy_id={self.legacy_id!r}, username={self.username!r}, "
            f"email={self.email!r}, provider={self.provider!r}, validated={self.validated})"
        )


def _optional_str(row: Mapping[str, Any], column: str) -> str | None:
    value = row.get(column)
    if value is None:
        return None
    return str(value)


def _flag(row: Mapping[str, Any], column: str) -> bool:
    return row.get(column) is True


def _optional_datetime(row: Mapping[str, Any], column: str) -> datetime | None:
    value = row.get(column)
    return value if isinstance(value, datetime) else None


def map_user_record(row: Mapping[str, Any]) -> UserRecord:
    """Convert one row from the user source into a UserRecord.

    The row may carry any subset of the authuser columns; a restricted view
    and the full table are handled by the same code. Absent columns take the
    field's zero value (``None`` or ``False``).

    Args:
        row: asyncpg Record or any mapping keyed by column name

    Returns:
        The mapped record

    Raises:
        UserRecordMappingError: If the row has no primary key
    """
    raw_id = row.get("id")
    if raw_id is None:
        raise UserRecordMappingError(f"Primary key id is null for user: {row.get('username')}")

    try:
        record_id = int(raw_id)
    except (TypeError, ValueError) as e:
        raise UserRecordMappingError(f"Primary key id is not an integer for user: {row.get('username')}") from e

    user_c = row.get("user_c")

    return UserRecord(
        id=record_id,
        legacy_id=_optional_str(row, "uniqueid"),
        username=_optional_str(row, "username"),
        email=_optional_str(row, "email"),
        first_name=_optional_str(row, "firstname"),
        last_name=_optional_str(row, "lastname"),
        password_hash=_optional_str(row, "password_pw"),
        password_salt=_optional_str(row, "password_slt"),
        provider=_optional_str(row, "provider"),
        validated=_flag(row, "validated"),
        created_at=_optional_datetime(row, "createdat"),
        updated_at=_optional_datetime(row, "updatedat"),
        locale=_optional_str(row, "locale"),
        timezone=_optional_str(row, "timezone"),
        superuser=_flag(row, "superuser"),
        password_should_be_changed=_flag(row, "passwordshouldbechanged"),
        user_c=int(user_c) if user_c is not None else None,
    )
