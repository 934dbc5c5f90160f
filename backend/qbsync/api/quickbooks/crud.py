from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ...core.database import dialect_insert
from ...utils.dates import utcnow
from .models import QuickBooksToken


async def save_qb_tokens(
    db: AsyncSession,
    realm_id: str,
    access_token: str,
    refresh_token: str,
    expires_in: int,
    refresh_token_expires_in: int,
) -> QuickBooksToken:
    """Upsert the token record for `realm_id`; expiries are relative seconds."""
    now = utcnow()
    values = {
        "realm_id": realm_id,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "access_token_expires_at": now + timedelta(seconds=int(expires_in)),
        "refresh_token_expires_at": now + timedelta(seconds=int(refresh_token_expires_in)),
        "updated_at": now,
    }

    stmt = dialect_insert(db, QuickBooksToken).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["realm_id"],
        set_={k: v for k, v in values.items() if k != "realm_id"},
    )
    try:
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return await load_qb_tokens(db, realm_id)


async def load_qb_tokens(
    db: AsyncSession, realm_id: Optional[str] = None
) -> Optional[QuickBooksToken]:
    """
    Load the token record for a realm, or the current one when no realm is
    given (most recently updated, there is normally only one).
    """
    stmt = select(QuickBooksToken).execution_options(populate_existing=True)
    if realm_id is not None:
        stmt = stmt.where(QuickBooksToken.realm_id == realm_id)
    else:
        stmt = stmt.order_by(QuickBooksToken.updated_at.desc(), QuickBooksToken.id.desc())
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def delete_qb_tokens(db: AsyncSession, realm_id: Optional[str] = None) -> bool:
    """Delete one realm's record, or every record when no realm is given."""
    stmt = delete(QuickBooksToken)
    if realm_id is not None:
        stmt = stmt.where(QuickBooksToken.realm_id == realm_id)
    try:
        result = await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result.rowcount > 0
