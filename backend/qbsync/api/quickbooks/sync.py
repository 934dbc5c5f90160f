import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...utils.dates import as_utc, start_of_day_utc, utcnow
from ..companies.crud import get_customer_company_map
from ..invoices import crud as invoices_crud
from ..invoices.models import InvoiceStatus
from .client import QuickBooksClient
from .exceptions import PersistenceFailedError
from .schemas import QuickBooksInvoice, SyncResult
from .tokens import require_access_token

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], QuickBooksClient]


def derive_status(
    balance: Union[float, Decimal],
    due_on: Optional[Union[date, datetime]],
    now: datetime,
) -> InvoiceStatus:
    """
    paid when nothing is owed, overdue once the due date has passed,
    unpaid otherwise. A bare date counts from midnight UTC of that day and
    an invoice without a due date is never overdue.
    """
    if Decimal(str(balance)) == 0:
        return InvoiceStatus.paid
    if due_on is None:
        return InvoiceStatus.unpaid

    if isinstance(due_on, datetime):
        due_at = as_utc(due_on)
    else:
        due_at = start_of_day_utc(due_on)

    if due_at < as_utc(now):
        return InvoiceStatus.overdue
    return InvoiceStatus.unpaid


def invoice_number_for(qb_invoice: QuickBooksInvoice) -> str:
    return qb_invoice.doc_number or f"QB-{qb_invoice.id}"


def malformed_invoice_message(row: Any, error: ValidationError) -> str:
    label = None
    if isinstance(row, dict):
        label = row.get("DocNumber") or row.get("Id")
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "entity"
    return f"Invoice {label or 'unknown'}: {field}: {first['msg']}"


def invoice_values(qb_invoice: QuickBooksInvoice, company_id: int, now: datetime) -> Dict[str, Any]:
    return {
        "quickbooks_id": qb_invoice.id,
        "invoice_number": invoice_number_for(qb_invoice),
        "company_id": company_id,
        "amount": Decimal(str(qb_invoice.total_amt)),
        "status": derive_status(qb_invoice.balance, qb_invoice.due_date, now).value,
        "invoice_date": qb_invoice.txn_date,
        "due_date": qb_invoice.due_date,
        "quickbooks_synced_at": now,
        "quickbooks_data": qb_invoice.snapshot(),
    }


async def upsert_quickbooks_invoice(
    db: AsyncSession,
    qb_invoice: QuickBooksInvoice,
    company_id: int,
    now: Optional[datetime] = None,
) -> None:
    values = invoice_values(qb_invoice, company_id, now or utcnow())
    try:
        await invoices_crud.upsert_invoice_by_quickbooks_id(db, values)
    except SQLAlchemyError as e:
        logger.error("Failed to upsert QuickBooks invoice %s: %s", qb_invoice.id, e)
        raise PersistenceFailedError(f"Failed to save invoice {qb_invoice.id}") from e


async def remove_quickbooks_invoice(db: AsyncSession, quickbooks_id: str) -> bool:
    try:
        return await invoices_crud.delete_invoice_by_quickbooks_id(db, quickbooks_id)
    except SQLAlchemyError as e:
        logger.error("Failed to delete QuickBooks invoice %s: %s", quickbooks_id, e)
        raise PersistenceFailedError(f"Failed to delete invoice {quickbooks_id}") from e


async def sync_invoices(
    db: AsyncSession, client_factory: ClientFactory = QuickBooksClient
) -> SyncResult:
    """
    Full pull of every QuickBooks invoice into the local mirror.

    Raises NotConnectedError before touching anything when there is no usable
    token, and ProviderRequestFailed when the invoice query itself fails.
    Per-invoice failures, malformed entities included, are reported in `errors` and do not stop the batch.
    """
    access_token, realm_id = await require_access_token(db)
    client = client_factory(access_token, realm_id)

    rows = await client.query_invoice_rows()
    customer_map = await get_customer_company_map(db)
    now = utcnow()

    result = SyncResult(total=len(rows))
    for row in rows:
        try:
            qb_invoice = QuickBooksInvoice.model_validate(row)
        except ValidationError as e:
            message = malformed_invoice_message(row, e)
            logger.warning("Skipping malformed QuickBooks invoice: %s", message)
            result.errors.append(message)
            continue

        company_id = customer_map.get(qb_invoice.customer_ref.value)
        if company_id is None:
            result.skipped += 1
            continue

        try:
            await upsert_quickbooks_invoice(db, qb_invoice, company_id, now)
        except PersistenceFailedError as e:
            result.errors.append(f"Invoice {invoice_number_for(qb_invoice)}: {e.detail}")
            continue
        result.synced += 1

    logger.info(
        "QuickBooks sync for realm %s: %s synced, %s skipped, %s errors of %s",
        realm_id,
        result.synced,
        result.skipped,
        len(result.errors),
        result.total,
    )
    return result
