from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class TokenGrant(BaseModel):
    """Token endpoint response, from either a code exchange or a refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_token_expires_in: int


# ---- QuickBooks entities (PascalCase on the wire) ----

class QuickBooksRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: str
    name: Optional[str] = None


class QuickBooksInvoice(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="Id")
    doc_number: Optional[str] = Field(default=None, alias="DocNumber")
    txn_date: Optional[date] = Field(default=None, alias="TxnDate")
    due_date: Optional[date] = Field(default=None, alias="DueDate")
    total_amt: float = Field(default=0, alias="TotalAmt")
    balance: float = Field(alias="Balance")
    customer_ref: QuickBooksRef = Field(alias="CustomerRef")

    def snapshot(self) -> Dict[str, Any]:
        """The entity as QuickBooks sent it, JSON-safe."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class QuickBooksEmail(BaseModel):
    model_config = ConfigDict(extra="allow")

    address: Optional[str] = Field(default=None, alias="Address")


class QuickBooksCustomer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="Id")
    display_name: str = Field(alias="DisplayName")
    company_name: Optional[str] = Field(default=None, alias="CompanyName")
    primary_email: Optional[QuickBooksEmail] = Field(default=None, alias="PrimaryEmailAddr")


# ---- Webhook payload ----

class WebhookEntity(BaseModel):
    name: str
    id: str
    operation: str
    lastUpdated: Optional[str] = None


class DataChangeEvent(BaseModel):
    entities: List[WebhookEntity] = []


class EventNotification(BaseModel):
    realmId: str
    dataChangeEvent: DataChangeEvent = DataChangeEvent()


class WebhookPayload(BaseModel):
    eventNotifications: List[EventNotification] = []


# ---- API responses ----

class SyncResult(BaseModel):
    synced: int = 0
    skipped: int = 0
    errors: List[str] = []
    total: int = 0


class SyncResponse(BaseModel):
    success: bool
    result: SyncResult
    total_from_quickbooks: int


class ConnectionStatus(BaseModel):
    connected: bool
    realm_id: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    error: Optional[str] = None


class CustomerOut(BaseModel):
    id: str
    display_name: str
    company_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_quickbooks(cls, customer: QuickBooksCustomer) -> "CustomerOut":
        return cls(
            id=customer.id,
            display_name=customer.display_name,
            company_name=customer.company_name,
            email=customer.primary_email.address if customer.primary_email else None,
        )


class CustomerListResponse(BaseModel):
    customers: List[CustomerOut]
