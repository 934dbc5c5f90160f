from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete
from typing import Any, Dict, Optional

from ...core.database import dialect_insert
from ...utils.dates import utcnow
from .models import Invoice

# columns replaced on every re-sync of the same QuickBooks invoice
_UPSERT_COLUMNS = (
    "invoice_number",
    "company_id",
    "amount",
    "status",
    "invoice_date",
    "due_date",
    "quickbooks_synced_at",
    "quickbooks_data",
)


async def get_invoice_by_id(db: AsyncSession, invoice_id: int) -> Optional[Invoice]:
    result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
    return result.scalar_one_or_none()


async def get_invoice_by_quickbooks_id(
    db: AsyncSession, quickbooks_id: str
) -> Optional[Invoice]:
    result = await db.execute(
        select(Invoice)
        .where(Invoice.quickbooks_id == quickbooks_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_invoice_by_quickbooks_id(db: AsyncSession, values: Dict[str, Any]) -> None:
    """
    Insert or replace the local mirror row for one QuickBooks invoice.

    `values` must contain `quickbooks_id` plus every column in
    `_UPSERT_COLUMNS`. Commits on success, rolls back and re-raises on
    failure so the session stays usable for the next invoice.
    """
    stmt = dialect_insert(db, Invoice).values(**values)
    update_set = {name: getattr(stmt.excluded, name) for name in _UPSERT_COLUMNS}
    update_set["updated_at"] = utcnow()
    stmt = stmt.on_conflict_do_update(
        index_elements=["quickbooks_id"], set_=update_set
    )

    try:
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def delete_invoice_by_quickbooks_id(db: AsyncSession, quickbooks_id: str) -> bool:
    """Returns False when there was nothing to delete."""
    try:
        result = await db.execute(
            delete(Invoice).where(Invoice.quickbooks_id == quickbooks_id)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result.rowcount > 0
