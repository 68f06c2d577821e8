#!/usr/bin/env python3
"""
Check that the configured authuser source is reachable and usable.

Reads the same environment / .env configuration as the service, then reports
connectivity, the visible row count and which optional columns the source
exposes. Optionally resolves one identifier and checks a password.

Usage:
    python scripts/check_authuser_source.py [--identifier <id-or-legacy-id>] [--check-password]

Examples:
    # Connectivity and column report only
    python scripts/check_authuser_source.py

    # Resolve a user by primary key or legacy uniqueid
    python scripts/check_authuser_source.py --identifier 42

    # Resolve and verify a password (prompted, never echoed)
    python scripts/check_authuser_source.py --identifier jsmith --check-password
"""

import argparse
import asyncio
import getpass
import logging
import sys

from userstore.connectors.authuser import AuthUserConnector
from userstore.core.config import load_settings
from userstore.core.exceptions import UserStoreError
from userstore.core.startup import close_user_storage_service, create_user_storage_service
from userstore.models.user_record import FULL_TABLE_ONLY_COLUMNS, RESTRICTED_VIEW_COLUMNS, UserRecord

logger = logging.getLogger(__name__)


async def report_columns(service) -> None:
    """Log which known authuser columns the configured source exposes."""
    async with AuthUserConnector.from_settings(service.db_pool, service.settings) as connector:
        rows = await connector.list_all(limit=1)

    if not rows:
        logger.warning("Source is empty; cannot inspect its columns")
        return

    columns = set(rows[0].keys())
    missing = [column for column in RESTRICTED_VIEW_COLUMNS if column not in columns]
    extra = [column for column in FULL_TABLE_ONLY_COLUMNS if column in columns]

    if missing:
        logger.error(f"❌ Source is missing required columns: {missing}")
    else:
        logger.info("✅ Source exposes all restricted view columns")
    logger.info(f"Full-table columns available: {extra or 'none (restricted view)'}")


async def resolve_identifier(service, identifier: str) -> tuple[UserRecord | None, str]:
    """Resolve by id or legacy id, then by username. Returns the record and the path that matched."""
    resolution = await service.resolve_by_id(identifier)
    if resolution.found:
        return resolution.record, resolution.kind.value

    record = await service.resolve_by_username(identifier)
    if record is not None:
        return record, "found_by_username"
    return None, resolution.kind.value


async def check_source(identifier: str | None, check_password: bool) -> bool:
    settings = load_settings()
    service = await create_user_storage_service(settings)
    try:
        if not await service.health_check():
            logger.error("❌ Database connection test failed")
            return False
        logger.info("✅ Database connection test successful")

        total = await service.count()
        logger.info(f"Visible users in {settings.DB_AUTHUSER_TABLE}: {total}")

        await report_columns(service)

        if identifier:
            record, matched_by = await resolve_identifier(service, identifier)
            if record is None:
                logger.error(f"❌ No user found for '{identifier}'")
                return False

            logger.info(f"✅ Resolved {record!r} ({matched_by})")
            logger.info(f"Password configured: {service.is_configured_for(record)}")

            if check_password:
                candidate = getpass.getpass("Password: ")
                if service.verify_password(record, candidate):
                    logger.info("✅ Password is valid")
                else:
                    logger.error("❌ Password is NOT valid")
                    return False

        return True
    finally:
        await close_user_storage_service(service)


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the configured authuser source")
    parser.add_argument("--identifier", help="Primary key, legacy uniqueid or username to resolve")
    parser.add_argument("--check-password", action="store_true", help="Prompt for and verify a password")
    args = parser.parse_args()

    try:
        ok = asyncio.run(check_source(args.identifier, args.check_password))
    except UserStoreError as e:
        logger.error(f"❌ {e}")
        return 1

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
