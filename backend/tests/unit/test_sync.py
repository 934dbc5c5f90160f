# tests/unit/test_sync.py
"""
Tests for the batch invoice reconciler.
"""
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from qbsync.api.invoices.crud import get_invoice_by_quickbooks_id
from qbsync.api.invoices.models import Invoice
from qbsync.api.quickbooks.exceptions import (
    NotConnectedError,
    PersistenceFailedError,
    ProviderRequestFailed,
)
from qbsync.api.quickbooks.schemas import QuickBooksInvoice
from qbsync.api.quickbooks.sync import invoice_values, sync_invoices, upsert_quickbooks_invoice
from qbsync.utils.dates import utcnow
from tests.fixtures.quickbooks_fixtures import UNMAPPED_CUSTOMER_ID, qb_invoice_payload

YESTERDAY = date.today() - timedelta(days=1)
TOMORROW = date.today() + timedelta(days=2)


async def _invoice_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Invoice))).scalar_one()


class TestSyncInvoices:
    async def test_scenarios(self, db, company, connected, fake_qb) -> None:
        # Arrange
        fake_qb.add_invoice(qb_invoice_payload("42", balance=0, due_date=YESTERDAY))
        fake_qb.add_invoice(qb_invoice_payload("43", balance=500, due_date=YESTERDAY))
        fake_qb.add_invoice(qb_invoice_payload("44", balance=500, due_date=TOMORROW))
        fake_qb.add_invoice(qb_invoice_payload("45", customer_id=UNMAPPED_CUSTOMER_ID))

        # Act
        result = await sync_invoices(db, fake_qb.factory)

        # Assert
        assert (result.synced, result.skipped, result.errors, result.total) == (3, 1, [], 4)

        paid = await get_invoice_by_quickbooks_id(db, "42")
        overdue = await get_invoice_by_quickbooks_id(db, "43")
        unpaid = await get_invoice_by_quickbooks_id(db, "44")
        assert (paid.company_id, paid.status) == (company.id, "paid")
        assert (overdue.company_id, overdue.status) == (company.id, "overdue")
        assert (unpaid.company_id, unpaid.status) == (company.id, "unpaid")
        assert await get_invoice_by_quickbooks_id(db, "45") is None
        assert await _invoice_count(db) == 3

    async def test_record_fields(self, db, company, connected, fake_qb) -> None:
        fake_qb.add_invoice(
            qb_invoice_payload("42", balance=120.5, due_date=TOMORROW, doc_number="1042", total=300.25)
        )

        await sync_invoices(db, fake_qb.factory)

        invoice = await get_invoice_by_quickbooks_id(db, "42")
        assert invoice.invoice_number == "1042"
        assert invoice.amount == Decimal("300.25")
        assert invoice.due_date == TOMORROW
        assert invoice.invoice_date == date.today() - timedelta(days=30)
        assert invoice.quickbooks_synced_at is not None
        assert invoice.quickbooks_data["Id"] == "42"
        assert invoice.quickbooks_data["Balance"] == 120.5

    async def test_missing_doc_number_falls_back(self, db, company, connected, fake_qb) -> None:
        fake_qb.add_invoice(qb_invoice_payload("42", doc_number=""))

        await sync_invoices(db, fake_qb.factory)

        assert (await get_invoice_by_quickbooks_id(db, "42")).invoice_number == "QB-42"

    async def test_resync_is_idempotent(self, db, company, connected, fake_qb) -> None:
        fake_qb.add_invoice(qb_invoice_payload("43", balance=500, due_date=YESTERDAY))

        await sync_invoices(db, fake_qb.factory)
        first = await get_invoice_by_quickbooks_id(db, "43")
        first_fields = (first.id, first.invoice_number, first.amount, first.status, first.due_date)
        await sync_invoices(db, fake_qb.factory)
        second = await get_invoice_by_quickbooks_id(db, "43")

        assert await _invoice_count(db) == 1
        assert (second.id, second.invoice_number, second.amount, second.status, second.due_date) == first_fields

    async def test_resync_picks_up_payment(self, db, company, connected, fake_qb) -> None:
        fake_qb.add_invoice(qb_invoice_payload("43", balance=500, due_date=YESTERDAY))
        await sync_invoices(db, fake_qb.factory)

        fake_qb.add_invoice(qb_invoice_payload("43", balance=0, due_date=YESTERDAY))
        await sync_invoices(db, fake_qb.factory)

        assert (await get_invoice_by_quickbooks_id(db, "43")).status == "paid"

    async def test_not_connected_aborts_before_calling_quickbooks(self, db, company, fake_qb) -> None:
        with pytest.raises(NotConnectedError):
            await sync_invoices(db, fake_qb.factory)

        assert fake_qb.requests == []

    async def test_query_failure_propagates(self, db, company, connected, fake_qb) -> None:
        fake_qb.fail_status = 500

        with pytest.raises(ProviderRequestFailed) as exc_info:
            await sync_invoices(db, fake_qb.factory)

        assert exc_info.value.provider_status == 500

    async def test_one_bad_invoice_does_not_abort_batch(self, db, company, connected, fake_qb) -> None:
        # Arrange
        fake_qb.add_invoice(qb_invoice_payload("42", doc_number="1042"))
        fake_qb.add_invoice(qb_invoice_payload("43", doc_number="1043"))
        real_upsert = upsert_quickbooks_invoice

        async def flaky_upsert(db, qb_invoice, company_id, now=None):
            if qb_invoice.id == "42":
                raise PersistenceFailedError("Failed to save invoice 42")
            return await real_upsert(db, qb_invoice, company_id, now)

        # Act
        with patch("qbsync.api.quickbooks.sync.upsert_quickbooks_invoice", new=flaky_upsert):
            result = await sync_invoices(db, fake_qb.factory)

        # Assert
        assert result.synced == 1
        assert result.errors == ["Invoice 1042: Failed to save invoice 42"]
        assert await get_invoice_by_quickbooks_id(db, "43") is not None

    async def test_malformed_invoice_is_reported_not_fatal(self, db, company, connected, fake_qb) -> None:
        # Arrange
        fake_qb.add_invoice(qb_invoice_payload("42", doc_number="1042"))
        broken = qb_invoice_payload("43", doc_number="1043")
        del broken["CustomerRef"]
        fake_qb.add_invoice(broken)

        # Act
        result = await sync_invoices(db, fake_qb.factory)

        # Assert
        assert (result.synced, result.skipped, result.total) == (1, 0, 2)
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Invoice 1043: ")
        assert await get_invoice_by_quickbooks_id(db, "42") is not None
        assert await get_invoice_by_quickbooks_id(db, "43") is None


class TestUpsertQuickBooksInvoice:
    async def test_database_error_becomes_persistence_failure(self, db, company) -> None:
        qb_invoice = QuickBooksInvoice.model_validate(qb_invoice_payload("42"))
        error = OperationalError("INSERT", {}, Exception("database is locked"))

        with patch(
            "qbsync.api.invoices.crud.upsert_invoice_by_quickbooks_id", side_effect=error
        ):
            with pytest.raises(PersistenceFailedError):
                await upsert_quickbooks_invoice(db, qb_invoice, company.id)

    def test_invoice_values(self) -> None:
        now = utcnow()
        qb_invoice = QuickBooksInvoice.model_validate(
            qb_invoice_payload("43", balance=500, due_date=YESTERDAY, doc_number="1043")
        )

        values = invoice_values(qb_invoice, 7, now)

        assert values["quickbooks_id"] == "43"
        assert values["company_id"] == 7
        assert values["status"] == "overdue"
        assert values["quickbooks_synced_at"] == now
        assert values["quickbooks_data"]["DocNumber"] == "1043"
