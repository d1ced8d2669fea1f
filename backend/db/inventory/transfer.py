import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

PENDING = "PENDING"
IN_TRANSIT = "IN_TRANSIT"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

TRANSFER_STATUSES = (PENDING, IN_TRANSIT, COMPLETED, CANCELLED)


class Transfer(Base):
    __tablename__ = "stock_transfers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    from_store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    to_store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(16), nullable=False, default=PENDING, index=True)  # PENDING|IN_TRANSIT|COMPLETED|CANCELLED
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    from_store = relationship("Store", foreign_keys=[from_store_id])
    to_store = relationship("Store", foreign_keys=[to_store_id])
    items = relationship(
        "TransferItem",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferItem.position",
    )


class TransferItem(Base):
    __tablename__ = "stock_transfer_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transfer_id = Column(UUID(as_uuid=True), ForeignKey("stock_transfers.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Numeric(14, 3), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    transfer = relationship("Transfer", back_populates="items")
    item = relationship("Item")
