import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ...core import config
from .exceptions import ProviderRequestFailed
from .schemas import QuickBooksCustomer, QuickBooksInvoice

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
CUSTOMER_SEARCH_LIMIT = 25


def qb_base_url() -> str:
    return (
        "https://quickbooks.api.intuit.com"
        if config.QUICKBOOKS_ENVIRONMENT == "production"
        else "https://sandbox-quickbooks.api.intuit.com"
    )


def qb_headers(access_token: str, accept: str = "application/json") -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": accept,
    }


def _escape(value: str) -> str:
    return value.replace("'", "\\'")


class QuickBooksClient:
    """
    Read-only client for one connected QuickBooks company (realm).

    Every non-2xx answer and every transport failure surfaces as
    ProviderRequestFailed. `transport` lets tests swap in httpx.MockTransport.
    """

    def __init__(
        self,
        access_token: str,
        realm_id: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.access_token = access_token
        self.realm_id = realm_id
        self._transport = transport

    @property
    def company_url(self) -> str:
        return f"{qb_base_url()}/v3/company/{self.realm_id}"

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        query = {"minorversion": config.QUICKBOOKS_MINOR_VERSION}
        if params:
            query.update(params)

        try:
            async with httpx.AsyncClient(
                headers=qb_headers(self.access_token, accept),
                timeout=config.QB_TIMEOUT,
                transport=self._transport,
            ) as client:
                resp = await client.get(f"{self.company_url}{path}", params=query)
        except httpx.RequestError as e:
            logger.warning("QuickBooks request to %s failed: %s", path, e)
            raise ProviderRequestFailed(None, str(e)) from e

        if resp.is_error:
            logger.warning("QuickBooks returned %s for %s", resp.status_code, path)
            raise ProviderRequestFailed(resp.status_code, resp.text)
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            logger.warning("QuickBooks returned a non-JSON body for %s", resp.request.url.path)
            raise ProviderRequestFailed(resp.status_code, resp.text) from e
        if not isinstance(body, dict):
            raise ProviderRequestFailed(resp.status_code, resp.text)
        return body

    async def _query(self, query: str, entity: str) -> List[Dict[str, Any]]:
        resp = await self._get("/query", params={"query": query})
        return self._json(resp).get("QueryResponse", {}).get(entity, [])

    @staticmethod
    def _parse(model, payload: Dict[str, Any]):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ProviderRequestFailed(
                None, f"Malformed {model.__name__} payload: {e}"
            ) from e

    # ---- invoices ----

    async def query_invoice_rows(
        self, modified_since: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """
        All invoices, or those changed after `modified_since` (date precision),
        as the raw entities QuickBooks returned. Pages through the query
        endpoint until a short page comes back.
        """
        where = ""
        if modified_since is not None:
            where = f" WHERE MetaData.LastUpdatedTime > '{modified_since.strftime('%Y-%m-%d')}'"

        rows: List[Dict[str, Any]] = []
        start = 1
        while True:
            page = await self._query(
                f"SELECT * FROM Invoice{where} STARTPOSITION {start} MAXRESULTS {PAGE_SIZE}",
                "Invoice",
            )
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            start += PAGE_SIZE
        return rows

    async def query_invoices(self, modified_since: Optional[date] = None) -> List[QuickBooksInvoice]:
        rows = await self.query_invoice_rows(modified_since)
        return [self._parse(QuickBooksInvoice, row) for row in rows]

    async def get_invoice(self, invoice_id: str) -> QuickBooksInvoice:
        resp = await self._get(f"/invoice/{invoice_id}")
        return self._parse(QuickBooksInvoice, self._json(resp).get("Invoice", {}))

    async def get_invoice_pdf(self, invoice_id: str) -> bytes:
        resp = await self._get(f"/invoice/{invoice_id}/pdf", accept="application/pdf")
        return resp.content

    # ---- customers ----

    async def search_customers(self, term: str) -> List[QuickBooksCustomer]:
        rows = await self._query(
            f"SELECT * FROM Customer WHERE DisplayName LIKE '%{_escape(term)}%' "
            f"MAXRESULTS {CUSTOMER_SEARCH_LIMIT}",
            "Customer",
        )
        return [self._parse(QuickBooksCustomer, row) for row in rows]

    async def list_customers(self) -> List[QuickBooksCustomer]:
        rows = await self._query(f"SELECT * FROM Customer MAXRESULTS {PAGE_SIZE}", "Customer")
        return [self._parse(QuickBooksCustomer, row) for row in rows]

    async def get_customer(self, customer_id: str) -> QuickBooksCustomer:
        resp = await self._get(f"/customer/{customer_id}")
        return self._parse(QuickBooksCustomer, self._json(resp).get("Customer", {}))

    async def test_connection(self) -> bool:
        try:
            await self._get(f"/companyinfo/{self.realm_id}")
        except ProviderRequestFailed:
            return False
        return True
