import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

PURCHASE = "PURCHASE"
WASTE = "WASTE"
TRANSFER_IN = "TRANSFER_IN"
TRANSFER_OUT = "TRANSFER_OUT"
ADJUSTMENT = "ADJUSTMENT"
SALE = "SALE"

MOVEMENT_TYPES = (PURCHASE, WASTE, TRANSFER_IN, TRANSFER_OUT, ADJUSTMENT, SALE)
INBOUND_TYPES = (PURCHASE, TRANSFER_IN)
OUTBOUND_TYPES = (WASTE, TRANSFER_OUT, SALE)

# reference_type values written by the engine itself
REF_MANUAL = "manual"
REF_TRANSFER = "transfer"
REF_COUNT = "count"
REF_WASTE_REASON = "waste_reason"
REF_CORRECTION = "correction"


class Movement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_account_item_store", "account_id", "item_id", "store_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)

    # Signed: positive = inbound, negative = outbound
    quantity = Column(Numeric(14, 3), nullable=False)
    type = Column(String(16), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    reference_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    reference_type = Column(String(32), nullable=True, index=True)

    # Unit cost known when the movement was recorded
    cost_price = Column(Numeric(12, 4), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    item = relationship("Item")
    store = relationship("Store")
