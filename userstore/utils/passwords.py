"""
Password verification for credentials stored in the authuser table.

OBP stores bcrypt hashes in a compact split form: ``password_pw`` holds
``"b;"`` followed by the hash without its last 16 characters, and
``password_slt`` holds those 16 characters. This module reassembles the full
bcrypt string and checks a candidate password against it with
``bcrypt.checkpw`` (constant-time comparison).
"""

import logging
import re
from typing import Any

import bcrypt

from userstore.models.credentials import credential_source

logger = logging.getLogger(__name__)

PASSWORD_CREDENTIAL_TYPE = "password"
COMPACT_HASH_PREFIX = "b;"

# bcrypt identifier, two-digit cost, 22-char salt + 31-char checksum
BCRYPT_HASH_PATTERN = re.compile(r"^\$2[aby]?\$\d{2}\$.{53}$")

# bcrypt only reads the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def supports_credential_type(credential_type: str) -> bool:
    return credential_type == PASSWORD_CREDENTIAL_TYPE


def reconstruct_bcrypt_hash(stored_hash: str | None, salt: str | None) -> str | None:
    """
    Rebuild the full bcrypt string from the stored hash and salt columns.

    Args:
        stored_hash: Value of password_pw, compact ("b;...") or already complete
        salt: Value of password_slt

    Returns:
        The reassembled hash, or None when either part is missing

    Example:
        >>> reconstruct_bcrypt_hash("b;$2a$10$SGIAR0RtthMlgJK9DhElBekIvo5ulZ26GBZJQ", "nXiDOLye3CtjzEke")
        '$2a$10$SGIAR0RtthMlgJK9DhElBekIvo5ulZ26GBZJQnXiDOLye3CtjzEke'
    """
    if not stored_hash or not salt:
        return None

    if stored_hash.startswith(COMPACT_HASH_PREFIX):
        return stored_hash[len(COMPACT_HASH_PREFIX) :] + salt

    return stored_hash


def is_bcrypt_hash(value: str | None) -> bool:
    return isinstance(value, str) and BCRYPT_HASH_PATTERN.fullmatch(value) is not None


def is_configured_for(source: Any, credential_type: str = PASSWORD_CREDENTIAL_TYPE) -> bool:
    """Check whether the source carries a stored password at all."""
    return supports_credential_type(credential_type) and credential_source(source).password_hash is not None


def verify_password(source: Any, candidate: str | None) -> bool:
    """
    Check a candidate password against a stored credential.

    Never raises: missing parts, malformed hashes and bcrypt errors all
    result in False.

    Args:
        source: UserRecord, DirectRecord, CachedRecord or a host cache mapping
        candidate: Plaintext password supplied by the user

    Returns:
        True only if bcrypt confirms the candidate matches
    """
    try:
        credential = credential_source(source)
    except TypeError:
        logger.warning("Password check requested for an unsupported credential source")
        return False

    stored_hash = credential.password_hash
    salt = credential.password_salt

    if not stored_hash or not salt:
        logger.warning("Missing stored password hash or salt")
        return False

    if not isinstance(candidate, str) or not candidate.strip():
        logger.debug("Empty candidate password rejected")
        return False

    full_hash = reconstruct_bcrypt_hash(stored_hash, salt)
    if not is_bcrypt_hash(full_hash):
        # Length only; the hash itself must not reach the logs
        logger.warning(f"Stored password has an invalid bcrypt format (length {len(full_hash or '')})")
        return False

    try:
        # Stored hashes cover the first 72 bytes; bcrypt 5 raises on longer input
        password = candidate.encode("utf-8")[:BCRYPT_MAX_PASSWORD_BYTES]
        return bcrypt.checkpw(password, full_hash.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error(f"bcrypt password check failed: {type(e).__name__}")
        return False
