from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func

from ...core.database import Base


class QuickBooksToken(Base):
    __tablename__ = "quickbooks_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    realm_id = Column(String(255), unique=True, nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<QuickBooksToken id={self.id} realm_id={self.realm_id}>"
