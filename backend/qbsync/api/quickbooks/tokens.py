import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ...utils.dates import as_utc, utcnow
from . import crud, oauth
from .exceptions import NotConnectedError, ProviderRequestFailed
from .models import QuickBooksToken

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)

# one in-flight refresh per realm; the refresh token rotates on use.
# Entries are dropped when the realm is disconnected.
_refresh_locks: "defaultdict[str, asyncio.Lock]" = defaultdict(asyncio.Lock)


async def disconnect_realm(db: AsyncSession, realm_id: Optional[str] = None) -> bool:
    """Drop the stored credentials, and with them the realm's refresh lock."""
    deleted = await crud.delete_qb_tokens(db, realm_id)
    if realm_id is None:
        _refresh_locks.clear()
    else:
        _refresh_locks.pop(realm_id, None)
    return deleted


def refresh_token_expired(record: QuickBooksToken, now: datetime) -> bool:
    return as_utc(record.refresh_token_expires_at) < now


def access_token_needs_refresh(record: QuickBooksToken, now: datetime) -> bool:
    return as_utc(record.access_token_expires_at) - REFRESH_BUFFER <= now


async def get_valid_access_token(
    db: AsyncSession, realm_id: Optional[str] = None
) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (access_token, realm_id), or (None, None) when QuickBooks is not
    connected or the connection can no longer be repaired without a new
    authorization.

    Without `realm_id` the current (single) connection is used; webhooks pass
    the realm they were delivered for.
    """
    record = await crud.load_qb_tokens(db, realm_id)
    if not record:
        return None, None

    now = utcnow()
    if refresh_token_expired(record, now):
        logger.info("QuickBooks refresh token expired for realm %s, disconnecting", record.realm_id)
        await disconnect_realm(db, record.realm_id)
        return None, None

    if not access_token_needs_refresh(record, now):
        return record.access_token, record.realm_id

    async with _refresh_locks[record.realm_id]:
        # another request may have refreshed while we waited
        record = await crud.load_qb_tokens(db, record.realm_id)
        if not record:
            return None, None
        if not access_token_needs_refresh(record, utcnow()):
            return record.access_token, record.realm_id

        return await _refresh(db, record)


async def _refresh(db: AsyncSession, record: QuickBooksToken) -> Tuple[Optional[str], Optional[str]]:
    realm_id = record.realm_id
    try:
        grant = await oauth.refresh_access_token(record.refresh_token)
    except ProviderRequestFailed as e:
        logger.warning(
            "QuickBooks token refresh failed for realm %s (status %s), disconnecting",
            realm_id,
            e.provider_status,
        )
        await disconnect_realm(db, realm_id)
        return None, None

    await crud.save_qb_tokens(
        db,
        realm_id=realm_id,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expires_in=grant.expires_in,
        refresh_token_expires_in=grant.refresh_token_expires_in,
    )
    logger.info("QuickBooks access token refreshed for realm %s", realm_id)
    return grant.access_token, realm_id


async def require_access_token(
    db: AsyncSession, realm_id: Optional[str] = None
) -> Tuple[str, str]:
    access_token, resolved_realm = await get_valid_access_token(db, realm_id)
    if not access_token or not resolved_realm:
        raise NotConnectedError()
    return access_token, resolved_realm
