import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
APPROVED = "approved"

COUNT_STATUSES = (IN_PROGRESS, COMPLETED, APPROVED)


class StockCount(Base):
    __tablename__ = "stock_counts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    name = Column(String, nullable=True)
    status = Column(String(16), nullable=False, default=IN_PROGRESS, index=True)  # in_progress|completed|approved
    notes = Column(Text, nullable=True)

    items_counted = Column(Integer, nullable=False, default=0)
    total_value = Column(Numeric(14, 4), nullable=True)
    expected_value = Column(Numeric(14, 4), nullable=True)
    discrepancy_value = Column(Numeric(14, 4), nullable=True)
    adjustment_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    store = relationship("Store")
    entries = relationship(
        "StockEntry",
        back_populates="count",
        cascade="all, delete-orphan",
        order_by="StockEntry.created_at.desc()",
    )


class StockEntry(Base):
    __tablename__ = "stock_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    count_id = Column(UUID(as_uuid=True), ForeignKey("stock_counts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)

    # Counted on the shelf
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=True)
    notes = Column(Text, nullable=True)

    # Written once, at approval
    expected_quantity = Column(Numeric(14, 3), nullable=True)
    discrepancy = Column(Numeric(14, 3), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    count = relationship("StockCount", back_populates="entries")
    item = relationship("Item")
