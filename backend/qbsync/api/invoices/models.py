from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Date, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from ...core.database import Base


class InvoiceStatus(str, enum.Enum):
    paid = "paid"
    unpaid = "unpaid"
    overdue = "overdue"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    invoice_number = Column(String, nullable=False)
    company_id = Column(
        Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, index=True)
    invoice_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)

    # mirror of the QuickBooks Invoice entity
    quickbooks_id = Column(String(64), unique=True, nullable=True, index=True)
    quickbooks_synced_at = Column(DateTime(timezone=True), nullable=True)
    quickbooks_data = Column(JSON, nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    company = relationship("Company", back_populates="invoices")
