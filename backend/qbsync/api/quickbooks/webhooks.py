"""
QuickBooks change notifications.

Intuit signs each delivery with base64(HMAC-SHA256(verifier_token, body))
in the `intuit-signature` header. Nothing in the body is trusted before that
check passes. Once it does, the endpoint always acknowledges with 200 so
Intuit does not keep redelivering; individual entity failures are logged.
"""
import base64
import hashlib
import hmac
import logging
from typing import Dict, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ...core import config
from ...utils.dates import utcnow
from ..companies.crud import get_customer_company_map
from .client import QuickBooksClient
from .exceptions import QuickBooksError, SignatureInvalidError
from .schemas import EventNotification, WebhookEntity, WebhookPayload
from .sync import ClientFactory, remove_quickbooks_invoice, upsert_quickbooks_invoice
from .tokens import get_valid_access_token

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "intuit-signature"
REMOVAL_OPERATIONS = {"Delete", "Void"}


def verify_webhook_signature(payload: bytes, signature: Optional[str]) -> bool:
    verifier = config.QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN
    if not verifier:
        logger.error("QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN is not set, rejecting webhook")
        return False
    if not signature:
        return False

    digest = hmac.new(verifier.encode("utf-8"), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest)
    return hmac.compare_digest(expected, signature.encode("utf-8"))


async def handle_webhook(
    db: AsyncSession,
    raw_body: bytes,
    signature: Optional[str],
    client_factory: ClientFactory = QuickBooksClient,
) -> Dict[str, object]:
    if not verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected QuickBooks webhook with invalid signature")
        raise SignatureInvalidError()

    try:
        payload = WebhookPayload.model_validate_json(raw_body)
    except ValidationError as e:
        logger.warning("Malformed QuickBooks webhook payload: %s", e)
        return {"success": False, "error": "Processing error"}

    customer_map: Optional[Dict[str, int]] = None
    for notification in payload.eventNotifications:
        invoice_entities = [
            entity for entity in notification.dataChangeEvent.entities if entity.name == "Invoice"
        ]
        if not invoice_entities:
            continue

        access_token, realm_id = await get_valid_access_token(db, notification.realmId)
        if not access_token:
            logger.warning(
                "Ignoring QuickBooks webhook for realm %s: not connected", notification.realmId
            )
            continue

        if customer_map is None:
            customer_map = await get_customer_company_map(db)
        client = client_factory(access_token, realm_id)

        for entity in invoice_entities:
            try:
                await _apply_invoice_change(db, client, customer_map, notification, entity)
            except QuickBooksError as e:
                logger.error(
                    "QuickBooks webhook %s of invoice %s (realm %s) failed: %s",
                    entity.operation,
                    entity.id,
                    notification.realmId,
                    e.detail,
                )

    return {"success": True}


async def _apply_invoice_change(
    db: AsyncSession,
    client: QuickBooksClient,
    customer_map: Dict[str, int],
    notification: EventNotification,
    entity: WebhookEntity,
) -> None:
    if entity.operation in REMOVAL_OPERATIONS:
        removed = await remove_quickbooks_invoice(db, entity.id)
        logger.info(
            "QuickBooks invoice %s %s in realm %s (local row removed: %s)",
            entity.id,
            entity.operation.lower(),
            notification.realmId,
            removed,
        )
        return

    qb_invoice = await client.get_invoice(entity.id)
    company_id = customer_map.get(qb_invoice.customer_ref.value)
    if company_id is None:
        logger.debug("QuickBooks invoice %s has no linked company, skipping", entity.id)
        return

    await upsert_quickbooks_invoice(db, qb_invoice, company_id, utcnow())
    logger.info("QuickBooks invoice %s %s via webhook", entity.id, entity.operation.lower())
