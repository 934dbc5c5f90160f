"""
Thin async wrapper around intuitlib's AuthClient.

AuthClient is a blocking requests.Session that also fetches Intuit's
discovery document when constructed, so every call here runs in a worker
thread and a fresh client is built per operation (it keeps token state on
the instance).
"""
import asyncio
import logging

import requests
from intuitlib.client import AuthClient
from intuitlib.enums import Scopes
from intuitlib.exceptions import AuthClientError
from pydantic import ValidationError

from ...core import config
from .exceptions import ProviderRequestFailed
from .schemas import TokenGrant

logger = logging.getLogger(__name__)

# Intuit refresh tokens live 100 days unless the response says otherwise
DEFAULT_REFRESH_TOKEN_TTL = 100 * 24 * 60 * 60
SCOPES = [Scopes.ACCOUNTING]


def build_auth_client() -> AuthClient:
    return AuthClient(
        client_id=config.QUICKBOOKS_CLIENT_ID,
        client_secret=config.QUICKBOOKS_CLIENT_SECRET,
        environment=config.QUICKBOOKS_ENVIRONMENT,
        redirect_uri=config.QUICKBOOKS_REDIRECT_URI,
    )


def _grant_from(auth_client: AuthClient, reason: str) -> TokenGrant:
    try:
        return TokenGrant(
            access_token=auth_client.access_token,
            refresh_token=auth_client.refresh_token,
            expires_in=auth_client.expires_in,
            refresh_token_expires_in=(
                getattr(auth_client, "x_refresh_token_expires_in", None)
                or DEFAULT_REFRESH_TOKEN_TTL
            ),
        )
    except ValidationError as e:
        raise ProviderRequestFailed(None, f"Malformed token response: {e}", reason=reason) from e


def _provider_error(exc: Exception, reason: str) -> ProviderRequestFailed:
    logger.warning("QuickBooks OAuth call failed (%s): %s", reason, exc)
    if isinstance(exc, AuthClientError):
        content = exc.content
        body = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else str(content)
        return ProviderRequestFailed(exc.status_code, body, reason=reason)
    return ProviderRequestFailed(None, str(exc), reason=reason)


async def get_authorization_url(state: str) -> str:
    try:
        auth_client = await asyncio.to_thread(build_auth_client)
        return auth_client.get_authorization_url(SCOPES, state_token=state)
    except (AuthClientError, requests.RequestException) as e:
        raise _provider_error(e, "authorization_url_failed") from e


async def exchange_code_for_tokens(code: str, realm_id: str) -> TokenGrant:
    """Authorization code -> tokens. Uses HTTP Basic client credentials."""
    try:
        auth_client = await asyncio.to_thread(build_auth_client)
        await asyncio.to_thread(auth_client.get_bearer_token, code, realm_id)
    except (AuthClientError, requests.RequestException) as e:
        raise _provider_error(e, "token_exchange_failed") from e
    return _grant_from(auth_client, "token_exchange_failed")


async def refresh_access_token(refresh_token: str) -> TokenGrant:
    try:
        auth_client = await asyncio.to_thread(build_auth_client)
        await asyncio.to_thread(auth_client.refresh, refresh_token)
    except (AuthClientError, requests.RequestException) as e:
        raise _provider_error(e, "token_refresh_failed") from e
    return _grant_from(auth_client, "token_refresh_failed")


async def revoke_token(token: str) -> None:
    try:
        auth_client = await asyncio.to_thread(build_auth_client)
        await asyncio.to_thread(auth_client.revoke, token)
    except (AuthClientError, requests.RequestException) as e:
        raise _provider_error(e, "token_revoke_failed") from e
