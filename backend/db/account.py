"""
Tenant master data the ledger scopes everything by.

Accounts and stores are owned by the onboarding side of the product; only
the columns the stock engine reads are modelled here.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class Account(Base):
    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    base_currency = Column(String(3), nullable=False, default="EUR")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    stores = relationship("Store", back_populates="account", cascade="all, delete-orphan")


class Store(Base):
    __tablename__ = "stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)

    account = relationship("Account", back_populates="stores")
