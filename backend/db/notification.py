import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID

from .database import Base, utcnow


class Notification(Base):
    """Outbox row; delivery to users is handled outside the stock engine."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)

    type = Column(String(32), nullable=False, index=True)  # DISCREPANCY
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link_url = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
