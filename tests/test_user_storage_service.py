"""
Tests for the caller-facing UserStorageService.
"""

from unittest.mock import AsyncMock

import bcrypt
import pytest

from userstore.core.config import Settings
from userstore.core.exceptions import AuthUserUnavailableError
from userstore.manager.identity_resolver import ResolutionKind
from userstore.models.credentials import CachedRecord
from userstore.services.user_storage_service import UserStorageService


@pytest.fixture
def service(fake_pool, settings) -> UserStorageService:
    return UserStorageService(fake_pool, settings)


class TestLookups:
    @pytest.mark.asyncio
    async def test_resolve_by_id(self, service, fake_pool):
        resolution = await service.resolve_by_id("42")

        assert resolution.kind is ResolutionKind.FOUND_BY_ID
        assert resolution.record.username == "zanswer"
        assert fake_pool.acquired == fake_pool.released == 1

    @pytest.mark.asyncio
    async def test_resolve_by_legacy_id(self, service):
        resolution = await service.resolve_by_id("LEGACY_ABC123")

        assert resolution.kind is ResolutionKind.FOUND_BY_LEGACY_ID
        assert resolution.record.external_id == "7"

    @pytest.mark.asyncio
    async def test_resolve_unknown_id(self, service):
        resolution = await service.resolve_by_id("does-not-exist")
        assert resolution.kind is ResolutionKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_resolve_by_username(self, service):
        record = await service.resolve_by_username("jsmith")

        assert record.id == 2
        assert record.first_name == "John"

    @pytest.mark.asyncio
    async def test_resolve_by_email(self, service):
        record = await service.resolve_by_email("smithson@x.com")
        assert record.username == "scorp"

    @pytest.mark.asyncio
    async def test_not_found_is_none(self, service):
        assert await service.resolve_by_username("nobody") is None
        assert await service.resolve_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_search(self, service):
        records = await service.search("smith", 0, 10)
        assert [record.username for record in records] == ["jsmith", "scorp"]

    @pytest.mark.asyncio
    async def test_list_all_pages(self, service):
        first_page = await service.list_all(offset=0, limit=2)
        rest = await service.list_all(offset=2)

        assert [record.username for record in first_page + rest] == [
            record.username for record in await service.list_all()
        ]

    @pytest.mark.asyncio
    async def test_count(self, service, authuser_rows):
        assert await service.count() == len(authuser_rows)


class TestDefaultViewSource:
    @pytest.fixture
    def view_service(self, monkeypatch, fake_pool, fake_connection, view_rows) -> UserStorageService:
        for name in ("DB_AUTHUSER_TABLE", "DB_LEGACY_ID_COLUMN", "OBP_AUTHUSER_PROVIDER"):
            monkeypatch.delenv(name, raising=False)
        fake_connection.rows = view_rows
        return UserStorageService(fake_pool, Settings(_env_file=None, DB_PASSWORD="secret"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identifier", ["999", "LEGACY_ABC123", "jsmith", ""])
    async def test_unknown_identifier_is_not_found(self, view_service, fake_connection, identifier):
        resolution = await view_service.resolve_by_id(identifier)

        assert resolution.kind is ResolutionKind.NOT_FOUND
        assert all("uniqueid" not in sql for sql, _ in fake_connection.queries)

    @pytest.mark.asyncio
    async def test_primary_key_is_found(self, view_service):
        resolution = await view_service.resolve_by_id("42")

        assert resolution.kind is ResolutionKind.FOUND_BY_ID
        assert resolution.record.username == "zanswer"
        assert resolution.record.legacy_id is None

    @pytest.mark.asyncio
    async def test_username_lookup(self, view_service):
        record = await view_service.resolve_by_username("jsmith")
        assert record.id == 2


class TestErrors:
    @pytest.mark.asyncio
    async def test_unavailable_source_propagates(self, service, fake_connection, fake_pool):
        fake_connection.error = ConnectionRefusedError("connection refused")

        with pytest.raises(AuthUserUnavailableError):
            await service.resolve_by_id("42")
        with pytest.raises(AuthUserUnavailableError):
            await service.search("smith")

        # Connections are returned even when queries fail
        assert fake_pool.acquired == fake_pool.released == 2

    @pytest.mark.asyncio
    async def test_health_check(self, service, fake_connection):
        assert await service.health_check() is True

        fake_connection.error = OSError("gone")
        assert await service.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_when_pool_fails(self, settings):
        pool = AsyncMock()
        pool.acquire.side_effect = OSError("pool closed")

        assert await UserStorageService(pool, settings).health_check() is False


class TestCredentials:
    @pytest.mark.asyncio
    async def test_login_flow(self, service, fake_connection):
        full_hash = bcrypt.hashpw(b"correct-password", bcrypt.gensalt(rounds=4)).decode()
        fake_connection.rows[1]["password_pw"] = "b;" + full_hash[:-16]
        fake_connection.rows[1]["password_slt"] = full_hash[-16:]

        record = await service.resolve_by_username("jsmith")

        assert service.is_configured_for(record)
        assert service.verify_password(record, "correct-password") is True
        assert service.verify_password(record, "wrong") is False
        assert service.verify_password(CachedRecord.from_record(record), "correct-password") is True

    @pytest.mark.asyncio
    async def test_user_without_password(self, service):
        record = await service.resolve_by_username("jsmith")

        assert service.is_configured_for(record) is False
        assert service.verify_password(record, "anything") is False

    def test_supports_credential_type(self, service):
        assert service.supports_credential_type("password")
        assert not service.supports_credential_type("otp")
