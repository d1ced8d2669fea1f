import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)

    items = relationship("Item", back_populates="category")


class Item(Base):
    """Stock-keeping item. Quantities are in `unit` (kg, L, unit...)."""

    __tablename__ = "items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

    name = Column(String, nullable=False)
    unit = Column(String, nullable=False, default="unit")
    is_active = Column(Boolean, nullable=False, default=True)

    # Current cost per unit; movements snapshot it when they are recorded
    cost_price = Column(Numeric(12, 4), nullable=True)

    min_stock_level = Column(Numeric(14, 3), nullable=True)
    max_stock_level = Column(Numeric(14, 3), nullable=True)

    category = relationship("Category", back_populates="items")
