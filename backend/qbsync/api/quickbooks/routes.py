import logging
import re
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ...core import auth, config
from ...core.database import get_db
from ..invoices.crud import get_invoice_by_id
from ..users.models import User
from . import crud, oauth
from .auth_flow import STATE_COOKIE_NAME, STATE_TTL, begin_authorization, complete_authorization
from .client import QuickBooksClient
from .exceptions import (
    ForbiddenError,
    InvoiceNotFoundError,
    InvoiceNotSyncedError,
    ProviderRequestFailed,
    QuickBooksError,
    SignatureInvalidError,
)
from .schemas import ConnectionStatus, CustomerListResponse, CustomerOut, SyncResponse
from .sync import ClientFactory, sync_invoices
from .tokens import disconnect_realm, get_valid_access_token, require_access_token
from .webhooks import SIGNATURE_HEADER, handle_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quickbooks", tags=["QuickBooks"])

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def get_client_factory() -> ClientFactory:
    return QuickBooksClient


def _settings_redirect(**params: str) -> RedirectResponse:
    url = f"{config.FRONTEND_REDIRECT_URL}{config.QUICKBOOKS_SETTINGS_PATH}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=302)


def attachment_filename(invoice_number: str) -> str:
    # anything outside a plain filename alphabet becomes "_"
    safe = _UNSAFE_FILENAME_CHARS.sub("_", invoice_number or "").strip("_")
    return f"invoice-{safe or 'unknown'}.pdf"


@router.get("/connect")
async def connect_quickbooks(admin: User = Depends(auth.get_current_admin)):
    authorization_url, state_cookie = await begin_authorization(admin)

    response = RedirectResponse(url=authorization_url, status_code=302)
    response.set_cookie(
        key=STATE_COOKIE_NAME,
        value=state_cookie,
        max_age=int(STATE_TTL.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=config.STATE_COOKIE_SECURE,
        path="/",
    )
    return response


@router.get("/callback")
async def quickbooks_callback(request: Request, db: AsyncSession = Depends(get_db)):
    params = request.query_params
    try:
        await complete_authorization(
            db,
            state_cookie=request.cookies.get(STATE_COOKIE_NAME),
            state=params.get("state"),
            code=params.get("code"),
            realm_id=params.get("realmId"),
            error=params.get("error"),
        )
        response = _settings_redirect(success="connected")
    except QuickBooksError as e:
        logger.warning("QuickBooks authorization failed (%s): %s", e.reason, e.detail)
        response = _settings_redirect(error=e.reason)
    except Exception:
        logger.exception("QuickBooks callback failed unexpectedly")
        response = _settings_redirect(error="callback_failed")

    response.delete_cookie(STATE_COOKIE_NAME, path="/")
    return response


@router.post("/disconnect")
async def disconnect_quickbooks(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(auth.get_current_admin),
):
    record = await crud.load_qb_tokens(db)
    if record:
        try:
            await oauth.revoke_token(record.refresh_token)
        except ProviderRequestFailed as e:
            logger.warning(
                "QuickBooks token revoke failed for realm %s (status %s), removing locally",
                record.realm_id,
                e.provider_status,
            )

    deleted = await disconnect_realm(db)
    if deleted:
        logger.info("QuickBooks disconnected by %s", admin.email)
    return {
        "success": True,
        "message": "QuickBooks disconnected" if deleted else "No QuickBooks connection found",
    }


@router.get("/status", response_model=ConnectionStatus)
async def quickbooks_status(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(auth.get_current_admin),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    if not await crud.load_qb_tokens(db):
        return ConnectionStatus(connected=False)

    access_token, realm_id = await get_valid_access_token(db)
    if not access_token:
        return ConnectionStatus(connected=False, error="Token expired, please reconnect")

    record = await crud.load_qb_tokens(db, realm_id)
    reachable = await client_factory(access_token, realm_id).test_connection()
    return ConnectionStatus(
        connected=reachable,
        realm_id=realm_id,
        token_expires_at=record.access_token_expires_at,
        refresh_token_expires_at=record.refresh_token_expires_at,
        last_sync=record.updated_at,
        error=None if reachable else "Unable to reach QuickBooks",
    )


@router.post("/sync-invoices", response_model=SyncResponse)
async def sync_quickbooks_invoices(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(auth.get_current_admin),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    result = await sync_invoices(db, client_factory)
    all_failed = bool(result.errors) and len(result.errors) == result.total

    body = SyncResponse(
        success=not all_failed,
        result=result,
        total_from_quickbooks=result.total,
    )
    if all_failed:
        return JSONResponse(status_code=502, content=body.model_dump())
    return body


@router.post("/webhook")
async def quickbooks_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    raw_body = await request.body()
    try:
        return await handle_webhook(
            db, raw_body, request.headers.get(SIGNATURE_HEADER), client_factory
        )
    except SignatureInvalidError:
        raise
    except Exception:
        logger.exception("QuickBooks webhook processing failed")
        return {"success": False, "error": "Processing error"}


@router.get("/webhook")
async def quickbooks_webhook_check(challenge: Optional[str] = None):
    if challenge:
        return PlainTextResponse(challenge)
    return {"status": "Webhook endpoint active"}


@router.get("/invoice/{invoice_id}/pdf")
async def quickbooks_invoice_pdf(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(auth.get_current_user),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    invoice = await get_invoice_by_id(db, invoice_id)
    if not invoice:
        raise InvoiceNotFoundError()
    if not user.is_admin and user.company_id != invoice.company_id:
        raise ForbiddenError("Access denied")
    if not invoice.quickbooks_id:
        raise InvoiceNotSyncedError()

    access_token, realm_id = await require_access_token(db)
    pdf = await client_factory(access_token, realm_id).get_invoice_pdf(invoice.quickbooks_id)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{attachment_filename(invoice.invoice_number)}"'
        },
    )


@router.get("/customers", response_model=CustomerListResponse)
async def quickbooks_customers(
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(auth.get_current_admin),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    access_token, realm_id = await require_access_token(db)
    client = client_factory(access_token, realm_id)

    term = (search or "").strip()
    if len(term) >= 2:
        customers = await client.search_customers(term)
    else:
        customers = await client.list_customers()
    return CustomerListResponse(customers=[CustomerOut.from_quickbooks(c) for c in customers])
