from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ...core.database import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)

    # QuickBooks Customer.Id this company is billed under
    quickbooks_customer_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_updated_date = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("User", back_populates="company", passive_deletes=True)
    invoices = relationship("Invoice", back_populates="company", passive_deletes=True)
