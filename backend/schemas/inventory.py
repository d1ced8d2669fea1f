from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator


MovementType = Literal["PURCHASE", "WASTE", "TRANSFER_IN", "TRANSFER_OUT", "ADJUSTMENT", "SALE"]
AlertType = Literal["LOW_STOCK", "OVER_STOCK"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class MovementCreate(BaseModel):
    item_id: UUID
    store_id: UUID
    type: MovementType
    quantity: Decimal
    reason: Optional[str] = None
    notes: Optional[str] = None
    reference_id: Optional[UUID] = None
    reference_type: Optional[str] = None
    cost_price: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    # Producers that only know magnitudes let the type decide the sign
    normalize_sign: bool = False

    @field_validator("reason", "notes", "reference_type")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @field_validator("cost_price")
    @classmethod
    def _cost_not_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("cost_price cannot be negative")
        return v

    @model_validator(mode="after")
    def _internal_types(self):
        if self.type in ("TRANSFER_IN", "TRANSFER_OUT"):
            raise ValueError("Use /transfers to move stock between stores")
        return self


class MovementBatchCreate(BaseModel):
    movements: List[MovementCreate]

    @field_validator("movements")
    @classmethod
    def _not_empty(cls, v: List[MovementCreate]) -> List[MovementCreate]:
        if not v:
            raise ValueError("at least one movement is required")
        return v


class WasteItem(BaseModel):
    item_id: UUID
    quantity: Decimal
    reason: Optional[str] = None
    reason_id: Optional[UUID] = None
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _not_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("quantity must not be zero")
        return v

    @field_validator("reason", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class WasteCreate(BaseModel):
    store_id: UUID
    items: List[WasteItem]

    @field_validator("items")
    @classmethod
    def _not_empty(cls, v: List[WasteItem]) -> List[WasteItem]:
        if not v:
            raise ValueError("at least one item is required")
        return v


class MovementCorrection(BaseModel):
    # The quantity the movement should have had; 0 voids it
    quantity: Decimal
    reason: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("reason", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class ItemMerge(BaseModel):
    item_to_remove_id: UUID
    item_to_keep_id: UUID
