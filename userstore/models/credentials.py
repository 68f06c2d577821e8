"""
Stored credential sources.

A credential can reach the verifier either straight from a freshly mapped
record or from the host's user cache, where only the hash and salt were kept.
Both variants expose the same two attributes and are picked once, at the
boundary, by ``credential_source``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from userstore.models.user_record import UserRecord

PASSWORD_CACHE_KEY = "userstore.UserRecord.password"
SALT_CACHE_KEY = "userstore.UserRecord.salt"


@dataclass(frozen=True)
class DirectRecord:
    """Credential read from a UserRecord that was just loaded."""

    record: UserRecord

    @property
    def password_hash(self) -> str | None:
        return self.record.password_hash

    @property
    def password_salt(self) -> str | None:
        return self.record.password_salt


@dataclass(frozen=True)
class CachedRecord:
    """Credential recovered from a host cache entry."""

    cached_with: Mapping[str, Any]

    @property
    def password_hash(self) -> str | None:
        return self._cached_str(PASSWORD_CACHE_KEY)

    @property
    def password_salt(self) -> str | None:
        return self._cached_str(SALT_CACHE_KEY)

    def _cached_str(self, key: str) -> str | None:
        # Host caches hold arbitrary objects; anything but a string is no credential
        value = self.cached_with.get(key)
        return value if isinstance(value, str) else None

    @classmethod
    def from_record(cls, record: UserRecord) -> "CachedRecord":
        """Build the cache entry the host should keep alongside its cached user."""
        cached_with: dict[str, Any] = {}
        if record.password_hash is not None:
            cached_with[PASSWORD_CACHE_KEY] = record.password_hash
            cached_with[SALT_CACHE_KEY] = record.password_salt
        return cls(cached_with=cached_with)


CredentialSource = DirectRecord | CachedRecord


def credential_source(value: UserRecord | DirectRecord | CachedRecord | Mapping[str, Any]) -> CredentialSource:
    """Resolve a record, a cache mapping or an existing source to a CredentialSource.

    Raises:
        TypeError: If the value is none of the supported shapes
    """
    if isinstance(value, (DirectRecord, CachedRecord)):
        return value
    if isinstance(value, UserRecord):
        return DirectRecord(value)
    if isinstance(value, Mapping):
        return CachedRecord(value)
    raise TypeError(f"Unsupported credential source: {type(value).__name__}")
