"""
Store-to-store transfers.

    PENDING -> IN_TRANSIT -> COMPLETED
    PENDING -> COMPLETED            (received directly)
    PENDING -> CANCELLED

Only completion touches the ledger: one TRANSFER_OUT at the source and one
TRANSFER_IN at the destination per line, committed together with the
status change.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.context import TenantContext
from core.errors import ConflictError, InvalidStateError, ValidationError, require_found
from core.quantities import to_quantity
from db.database import transaction, utcnow
from db.item import Item
from db.inventory.movement import REF_TRANSFER, TRANSFER_IN, TRANSFER_OUT, Movement
from db.inventory.transfer import CANCELLED, COMPLETED, IN_TRANSIT, PENDING, Transfer, TransferItem
from services import ledger
from services.ledger import MovementRequest

logger = logging.getLogger(__name__)

# status -> statuses it may move to
_TRANSITIONS = {
    PENDING: (IN_TRANSIT, COMPLETED, CANCELLED),
    IN_TRANSIT: (COMPLETED,),
    COMPLETED: (),
    CANCELLED: (),
}


@dataclass
class TransferLine:
    item_id: UUID
    quantity: Decimal


def _check_transition(transfer: Transfer, target: str) -> None:
    if target not in _TRANSITIONS.get(transfer.status, ()):
        raise InvalidStateError(
            f"Cannot move a {transfer.status} transfer to {target}",
            transfer_id=transfer.id,
            status=transfer.status,
        )


def _transfer_query(ctx: TenantContext):
    return (
        select(Transfer)
        .options(
            selectinload(Transfer.items).selectinload(TransferItem.item),
            selectinload(Transfer.from_store),
            selectinload(Transfer.to_store),
        )
        .where(Transfer.account_id == ctx.account_id)
    )


async def get_transfer(db: AsyncSession, ctx: TenantContext, transfer_id: UUID, *, for_update: bool = False) -> Transfer:
    stmt = _transfer_query(ctx).where(Transfer.id == transfer_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=Transfer)
    res = await db.execute(stmt)
    return require_found(res.scalar_one_or_none(), "Transfer", transfer_id)


async def list_transfers(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: Optional[UUID] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[Transfer]:
    stmt = _transfer_query(ctx)
    if store_id is not None:
        stmt = stmt.where(or_(Transfer.from_store_id == store_id, Transfer.to_store_id == store_id))
    if status:
        stmt = stmt.where(Transfer.status == status)
    res = await db.execute(stmt.order_by(Transfer.created_at.desc()).limit(limit))
    return list(res.scalars().all())


async def create_transfer(
    db: AsyncSession,
    ctx: TenantContext,
    from_store_id: UUID,
    to_store_id: UUID,
    lines: Sequence[TransferLine],
    notes: Optional[str] = None,
) -> Transfer:
    if from_store_id == to_store_id:
        raise ValidationError("Cannot transfer to the same store")
    if not lines:
        raise ValidationError("At least one item is required")
    quantities = []
    for line in lines:
        try:
            q = to_quantity(line.quantity)
        except ValueError as e:
            raise ValidationError(str(e))
        if q <= 0:
            raise ValidationError("Transfer quantities must be greater than zero", item_id=line.item_id)
        quantities.append(q)

    async with transaction(db):
        await ledger.load_store(db, ctx, from_store_id)
        await ledger.load_store(db, ctx, to_store_id)
        for line in lines:
            await ledger.load_item(db, ctx, line.item_id)

        transfer = Transfer(
            account_id=ctx.account_id,
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            status=PENDING,
            notes=notes,
            created_by=ctx.user_id,
            items=[
                TransferItem(item_id=line.item_id, quantity=q, position=i)
                for i, (line, q) in enumerate(zip(lines, quantities))
            ],
        )
        db.add(transfer)
        await db.flush()
        transfer_id = transfer.id

    logger.info("transfer %s created: %d line(s)", transfer_id, len(lines))
    return await get_transfer(db, ctx, transfer_id)


async def _set_status(db: AsyncSession, transfer: Transfer, target: str, **values) -> None:
    """Compare-and-set on the status column; losing a race raises ConflictError."""
    res = await db.execute(
        update(Transfer)
        .where(Transfer.id == transfer.id, Transfer.status == transfer.status)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Transfer was modified concurrently", transfer_id=transfer.id)
    await db.refresh(transfer, attribute_names=["status", "completed_at", "completed_by"])


async def _simple_transition(db: AsyncSession, ctx: TenantContext, transfer_id: UUID, target: str) -> Transfer:
    async with transaction(db):
        transfer = await get_transfer(db, ctx, transfer_id, for_update=True)
        _check_transition(transfer, target)
        await _set_status(db, transfer, target)
    logger.info("transfer %s -> %s", transfer_id, target)
    return transfer


async def mark_in_transit(db: AsyncSession, ctx: TenantContext, transfer_id: UUID) -> Transfer:
    return await _simple_transition(db, ctx, transfer_id, IN_TRANSIT)


async def cancel_transfer(db: AsyncSession, ctx: TenantContext, transfer_id: UUID) -> Transfer:
    return await _simple_transition(db, ctx, transfer_id, CANCELLED)


async def complete_transfer(db: AsyncSession, ctx: TenantContext, transfer_id: UUID) -> List[Movement]:
    """
    Receive a transfer: paired OUT/IN movements per line plus the status change,
    all in one transaction. Movements are valued at the item's current cost.
    """
    movements: List[Movement] = []
    async with transaction(db):
        transfer = await get_transfer(db, ctx, transfer_id, for_update=True)
        _check_transition(transfer, COMPLETED)

        for line in transfer.items:
            item: Item = line.item
            quantity = to_quantity(line.quantity)
            movements.append(
                await ledger.append_movement(
                    db,
                    ctx,
                    MovementRequest(
                        item_id=line.item_id,
                        store_id=transfer.from_store_id,
                        quantity=-quantity,
                        movement_type=TRANSFER_OUT,
                        notes=f"Transfer to {transfer.to_store.name if transfer.to_store else transfer.to_store_id}",
                        reference_id=transfer.id,
                        reference_type=REF_TRANSFER,
                        cost_price=item.cost_price,
                    ),
                    item=item,
                )
            )
            movements.append(
                await ledger.append_movement(
                    db,
                    ctx,
                    MovementRequest(
                        item_id=line.item_id,
                        store_id=transfer.to_store_id,
                        quantity=quantity,
                        movement_type=TRANSFER_IN,
                        notes=f"Transfer from {transfer.from_store.name if transfer.from_store else transfer.from_store_id}",
                        reference_id=transfer.id,
                        reference_type=REF_TRANSFER,
                        cost_price=item.cost_price,
                    ),
                    item=item,
                )
            )

        await _set_status(db, transfer, COMPLETED, completed_at=utcnow(), completed_by=ctx.user_id)

    logger.info("transfer %s completed: %d movement(s)", transfer_id, len(movements))
    return movements


async def delete_transfer(db: AsyncSession, ctx: TenantContext, transfer_id: UUID) -> None:
    async with transaction(db):
        transfer = await get_transfer(db, ctx, transfer_id, for_update=True)
        if transfer.status != PENDING:
            raise InvalidStateError(
                "Only pending transfers can be deleted",
                transfer_id=transfer.id,
                status=transfer.status,
            )
        await db.delete(transfer)
    logger.info("transfer %s deleted", transfer_id)
