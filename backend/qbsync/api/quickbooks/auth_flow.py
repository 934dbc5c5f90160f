"""
Admin-initiated QuickBooks authorization (OAuth2 code grant).

`begin_authorization` produces the Intuit consent URL plus a signed state
cookie bound to the admin who started the flow. `complete_authorization`
validates the callback against that cookie, exchanges the code and stores
the credentials. Nothing is persisted unless every check and the exchange
succeed.
"""
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...core import config
from ...core.auth import decode_claims
from ...utils.dates import utcnow
from ..users import crud as users_crud
from ..users.models import User
from . import crud, oauth
from .exceptions import (
    ForbiddenError,
    InvalidStateError,
    MissingCallbackParamsError,
    PersistenceFailedError,
    ProviderDeniedError,
)
from .models import QuickBooksToken

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "qb_oauth_state"
STATE_TTL = timedelta(minutes=10)
_STATE_PURPOSE = "quickbooks_oauth_state"


def new_state() -> str:
    return secrets.token_hex(32)


def encode_state_cookie(state: str, email: str) -> str:
    claims = {
        "sub": email,
        "state": state,
        "purpose": _STATE_PURPOSE,
        "exp": utcnow() + STATE_TTL,
    }
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_state_cookie(cookie: Optional[str]) -> Tuple[str, str]:
    """Returns (state, email); InvalidStateError if missing, expired or tampered."""
    if not cookie:
        raise InvalidStateError("Missing OAuth state cookie")
    try:
        claims = decode_claims(cookie)
    except JWTError as e:
        raise InvalidStateError("Invalid or expired OAuth state cookie") from e

    state, email = claims.get("state"), claims.get("sub")
    if claims.get("purpose") != _STATE_PURPOSE or not state or not email:
        raise InvalidStateError("Invalid OAuth state cookie")
    return state, email


def states_match(expected: str, received: Optional[str]) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


async def begin_authorization(admin: User) -> Tuple[str, str]:
    """Returns (authorization_url, state_cookie_value)."""
    state = new_state()
    url = await oauth.get_authorization_url(state)
    logger.info("QuickBooks authorization started by %s", admin.email)
    return url, encode_state_cookie(state, admin.email)


async def complete_authorization(
    db: AsyncSession,
    *,
    state_cookie: Optional[str],
    state: Optional[str],
    code: Optional[str],
    realm_id: Optional[str],
    error: Optional[str] = None,
) -> QuickBooksToken:
    """
    Checks, in order: the state cookie and returned state, that the bound
    user is still an admin, the provider's `error`, then `code`/`realmId`.
    Raises the matching QuickBooksError; the caller maps `.reason` into the
    redirect.
    """
    expected_state, email = decode_state_cookie(state_cookie)
    if not states_match(expected_state, state):
        raise InvalidStateError("OAuth state mismatch")

    user = await users_crud.get_user_by_email(db, email)
    if not user or not user.is_admin:
        raise ForbiddenError()

    if error:
        raise ProviderDeniedError(error)
    if not code or not realm_id:
        raise MissingCallbackParamsError()

    grant = await oauth.exchange_code_for_tokens(code, realm_id)

    try:
        record = await crud.save_qb_tokens(
            db,
            realm_id=realm_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_in=grant.expires_in,
            refresh_token_expires_in=grant.refresh_token_expires_in,
        )
    except SQLAlchemyError as e:
        logger.error("Failed to store QuickBooks tokens for realm %s: %s", realm_id, e)
        raise PersistenceFailedError("Failed to store QuickBooks credentials") from e

    logger.info("QuickBooks realm %s connected by %s", realm_id, email)
    return record
