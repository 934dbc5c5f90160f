# tests/unit/test_credential_store.py
"""
Tests for the QuickBooks token record store.
"""
from datetime import timedelta

from sqlalchemy import func, select

from qbsync.api.quickbooks import crud
from qbsync.api.quickbooks.models import QuickBooksToken
from qbsync.utils.dates import as_utc, utcnow
from tests.fixtures.quickbooks_fixtures import REALM_ID, store_tokens


class TestCredentialStore:
    """save / load / delete of QuickBooksToken rows."""

    async def test_save_creates_record_with_absolute_expiries(self, db) -> None:
        # Arrange
        before = utcnow()

        # Act
        record = await store_tokens(db, expires_in=3600, refresh_token_expires_in=86400)

        # Assert
        assert record.realm_id == REALM_ID
        assert record.access_token == "access-1"
        assert record.refresh_token == "refresh-1"
        access_exp = as_utc(record.access_token_expires_at)
        assert before + timedelta(seconds=3590) <= access_exp <= utcnow() + timedelta(seconds=3600)
        refresh_exp = as_utc(record.refresh_token_expires_at)
        assert refresh_exp - access_exp > timedelta(hours=22)

    async def test_save_twice_keeps_one_row_per_realm(self, db) -> None:
        await store_tokens(db, access_token="access-1", refresh_token="refresh-1")
        await store_tokens(db, access_token="access-2", refresh_token="refresh-2")

        count = (await db.execute(select(func.count()).select_from(QuickBooksToken))).scalar_one()
        record = await crud.load_qb_tokens(db, REALM_ID)

        assert count == 1
        assert record.access_token == "access-2"
        assert record.refresh_token == "refresh-2"

    async def test_load_without_realm_returns_most_recent(self, db) -> None:
        await store_tokens(db, realm_id="realm-a", access_token="a")
        await store_tokens(db, realm_id="realm-b", access_token="b")

        record = await crud.load_qb_tokens(db)

        assert record.realm_id == "realm-b"

    async def test_load_returns_none_when_nothing_stored(self, db) -> None:
        assert await crud.load_qb_tokens(db) is None
        assert await crud.load_qb_tokens(db, REALM_ID) is None

    async def test_delete_is_idempotent(self, db) -> None:
        await store_tokens(db)

        assert await crud.delete_qb_tokens(db, REALM_ID) is True
        assert await crud.delete_qb_tokens(db, REALM_ID) is False
        assert await crud.load_qb_tokens(db) is None

    async def test_delete_without_realm_removes_everything(self, db) -> None:
        await store_tokens(db, realm_id="realm-a")
        await store_tokens(db, realm_id="realm-b")

        assert await crud.delete_qb_tokens(db) is True
        assert await crud.load_qb_tokens(db) is None

    async def test_delete_one_realm_leaves_others(self, db) -> None:
        await store_tokens(db, realm_id="realm-a")
        await store_tokens(db, realm_id="realm-b")

        await crud.delete_qb_tokens(db, "realm-a")

        assert await crud.load_qb_tokens(db, "realm-a") is None
        assert (await crud.load_qb_tokens(db, "realm-b")).realm_id == "realm-b"
