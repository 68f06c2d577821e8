"""
Resolution of external identifiers to user records.

Records created before the integer primary key scheme are still referenced
by their 32-character legacy ``uniqueid``. The resolver tries the primary
key first and falls back to the legacy column, and reports which path
matched so callers (and tests) can tell them apart.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from userstore.models.user_record import UserRecord, map_user_record
from userstore.utils.storage_id import external_id

logger = logging.getLogger(__name__)

# Signed 64-bit range of the authuser id column
MIN_PRIMARY_KEY = -(2**63)
MAX_PRIMARY_KEY = 2**63 - 1

_NUMERIC_ID = re.compile(r"[+-]?[0-9]+")


class ResolutionKind(Enum):
    FOUND_BY_ID = "found_by_id"
    FOUND_BY_LEGACY_ID = "found_by_legacy_id"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    record: UserRecord | None = None

    @property
    def found(self) -> bool:
        return self.record is not None

    @classmethod
    def not_found(cls) -> "Resolution":
        return cls(ResolutionKind.NOT_FOUND)


class IdentityLookup(Protocol):
    async def find_by_id(self, user_id: int): ...

    async def find_by_legacy_id(self, legacy_id: str): ...


def parse_primary_key(identifier: str) -> int | None:
    """Parse an identifier as a primary key.

    Only plain ASCII decimal strings within the signed 64-bit range qualify.
    Anything else (empty, whitespace, letters, overflow) gives None.
    """
    if not _NUMERIC_ID.fullmatch(identifier):
        return None

    value = int(identifier)
    if value < MIN_PRIMARY_KEY or value > MAX_PRIMARY_KEY:
        return None
    return value


class IdentityResolver:
    """Resolves an external identifier to exactly one UserRecord."""

    def __init__(self, lookup: IdentityLookup) -> None:
        self.lookup = lookup

    async def resolve(self, identifier: str) -> Resolution:
        """
        Resolve an identifier using the primary key first, then the legacy id.

        Host storage ids (``f:<component>:<external>``) are accepted and
        reduced to their external part. A miss on both paths is a normal
        NOT_FOUND result; only data source failures raise.

        Raises:
            AuthUserUnavailableError: If the user source cannot be queried
        """
        key = external_id(identifier)

        primary_key = parse_primary_key(key)
        if primary_key is not None:
            row = await self.lookup.find_by_id(primary_key)
            if row is not None:
                return Resolution(ResolutionKind.FOUND_BY_ID, map_user_record(row))
            logger.debug(f"No user with id {primary_key}, trying legacy id lookup")

        row = await self.lookup.find_by_legacy_id(key)
        if row is not None:
            record = map_user_record(row)
            logger.info(
                f"User {record.username} resolved by legacy id; future references should use id {record.external_id}"
            )
            return Resolution(ResolutionKind.FOUND_BY_LEGACY_ID, record)

        logger.debug(f"No user found for identifier '{key}'")
        return Resolution.not_found()
