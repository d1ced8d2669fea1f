from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class TransferItemCreate(BaseModel):
    item_id: UUID
    quantity: Decimal

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v


class TransferCreate(BaseModel):
    from_store_id: UUID
    to_store_id: UUID
    items: List[TransferItemCreate]
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
