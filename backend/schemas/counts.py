from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


ExpectedAsOf = Literal["approval", "count_started"]


class CountCreate(BaseModel):
    store_id: UUID
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class EntryCreate(BaseModel):
    item_id: UUID
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _quantity_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("quantity cannot be negative")
        return v

    @field_validator("unit_cost")
    @classmethod
    def _unit_cost_not_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("unit_cost cannot be negative")
        return v


class EntryUpdate(BaseModel):
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _quantity_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("quantity cannot be negative")
        return v


class CountComplete(BaseModel):
    notes: Optional[str] = None


class CountApprove(BaseModel):
    adjustment_notes: Optional[str] = None
    expected_as_of: Optional[ExpectedAsOf] = None


# PUT /counts/{id} commands, one variant per action


class AddEntryCommand(EntryCreate):
    action: Literal["add_entry"]


class UpdateEntryCommand(EntryUpdate):
    action: Literal["update_entry"]
    entry_id: UUID


class DeleteEntryCommand(BaseModel):
    action: Literal["delete_entry"]
    entry_id: UUID


class CompleteCommand(CountComplete):
    action: Literal["complete"]


CountCommand = Annotated[
    Union[AddEntryCommand, UpdateEntryCommand, DeleteEntryCommand, CompleteCommand],
    Field(discriminator="action"),
]
