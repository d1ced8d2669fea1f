"""
Physical stock counts.

    in_progress -> completed -> approved

Entries can only change while the count is in progress; completing it
freezes the snapshot that reconciliation compares against the ledger.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.context import TenantContext
from core.errors import ConflictError, InvalidStateError, ValidationError, require_found
from core.quantities import ZERO, to_decimal, to_money, to_quantity
from db.database import transaction, utcnow
from db.inventory.count import APPROVED, COMPLETED, IN_PROGRESS, StockCount, StockEntry
from db.item import Item
from services import ledger

logger = logging.getLogger(__name__)


@dataclass
class CountReport:
    total_counts: int
    in_progress_counts: int
    completed_counts: int
    approved_counts: int
    total_value: Decimal
    total_discrepancy: Decimal
    total_items_counted: int
    average_count_value: Decimal


def _count_query(ctx: TenantContext):
    return (
        select(StockCount)
        .options(
            selectinload(StockCount.store),
            selectinload(StockCount.entries).selectinload(StockEntry.item).selectinload(Item.category),
        )
        .where(StockCount.account_id == ctx.account_id)
    )


async def get_count(db: AsyncSession, ctx: TenantContext, count_id: UUID, *, for_update: bool = False) -> StockCount:
    stmt = _count_query(ctx).where(StockCount.id == count_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=StockCount)
    res = await db.execute(stmt)
    return require_found(res.scalar_one_or_none(), "Count", count_id)


async def list_counts(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: Optional[UUID] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[StockCount]:
    stmt = select(StockCount).options(selectinload(StockCount.store)).where(StockCount.account_id == ctx.account_id)
    if store_id is not None:
        stmt = stmt.where(StockCount.store_id == store_id)
    if status:
        stmt = stmt.where(StockCount.status == status)
    if start_date is not None:
        stmt = stmt.where(StockCount.created_at >= start_date)
    if end_date is not None:
        stmt = stmt.where(StockCount.created_at <= end_date)
    res = await db.execute(stmt.order_by(StockCount.created_at.desc()))
    return list(res.scalars().all())


def _require_in_progress(count: StockCount) -> None:
    if count.status != IN_PROGRESS:
        raise InvalidStateError(
            f"Count is {count.status}; entries can only change while in progress",
            count_id=count.id,
            status=count.status,
        )


def _counted_quantity(quantity) -> Decimal:
    try:
        q = to_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e))
    if q < 0:
        raise ValidationError("Counted quantity cannot be negative")
    return q


async def start_count(db: AsyncSession, ctx: TenantContext, store_id: UUID, name: Optional[str] = None) -> StockCount:
    name = (name or "").strip() or f"Count - {utcnow().date().isoformat()}"
    async with transaction(db):
        await ledger.load_store(db, ctx, store_id)
        count = StockCount(
            account_id=ctx.account_id,
            store_id=store_id,
            user_id=ctx.user_id,
            name=name,
            status=IN_PROGRESS,
            items_counted=0,
        )
        db.add(count)
        await db.flush()
        count_id = count.id
    logger.info("count %s started for store %s", count_id, store_id)
    return await get_count(db, ctx, count_id)


async def add_entry(
    db: AsyncSession,
    ctx: TenantContext,
    count_id: UUID,
    item_id: UUID,
    quantity,
    unit_cost=None,
    notes: Optional[str] = None,
) -> StockEntry:
    q = _counted_quantity(quantity)
    unit_cost = ledger.validate_price(unit_cost, "unit_cost")
    async with transaction(db):
        count = await get_count(db, ctx, count_id, for_update=True)
        _require_in_progress(count)
        item = await ledger.load_item(db, ctx, item_id)
        # One entry per item per count
        if any(e.item_id == item.id for e in count.entries):
            raise ValidationError("Item is already counted; update its entry instead", item_id=item.id)

        entry = StockEntry(
            count_id=count.id,
            item=item,
            quantity=q,
            unit_cost=unit_cost,
            notes=notes,
        )
        count.entries.append(entry)
        count.items_counted = (count.items_counted or 0) + 1
        await db.flush()
        entry_id = entry.id
    return await _get_entry(db, count_id, entry_id)


async def _get_entry(db: AsyncSession, count_id: UUID, entry_id: UUID) -> StockEntry:
    res = await db.execute(
        select(StockEntry)
        .options(selectinload(StockEntry.item).selectinload(Item.category))
        .where(StockEntry.id == entry_id, StockEntry.count_id == count_id)
        .execution_options(populate_existing=True)
    )
    return require_found(res.scalar_one_or_none(), "Entry", entry_id)


async def update_entry(
    db: AsyncSession,
    ctx: TenantContext,
    count_id: UUID,
    entry_id: UUID,
    quantity,
    unit_cost=None,
    notes: Optional[str] = None,
) -> StockEntry:
    q = _counted_quantity(quantity)
    unit_cost = ledger.validate_price(unit_cost, "unit_cost")
    async with transaction(db):
        count = await get_count(db, ctx, count_id, for_update=True)
        _require_in_progress(count)
        entry = await _get_entry(db, count.id, entry_id)
        entry.quantity = q
        if unit_cost is not None:
            entry.unit_cost = unit_cost
        if notes is not None:
            entry.notes = notes
    return entry


async def delete_entry(db: AsyncSession, ctx: TenantContext, count_id: UUID, entry_id: UUID) -> None:
    async with transaction(db):
        count = await get_count(db, ctx, count_id, for_update=True)
        _require_in_progress(count)
        entry = await _get_entry(db, count.id, entry_id)
        count.entries.remove(entry)
        count.items_counted = max((count.items_counted or 0) - 1, 0)


def entry_cost(entry: StockEntry) -> Decimal:
    """Unit cost snapshot on the entry, else the item's current cost."""
    if entry.unit_cost is not None:
        return to_decimal(entry.unit_cost)
    item = entry.item
    return to_decimal(item.cost_price if item is not None else None)


async def complete_count(db: AsyncSession, ctx: TenantContext, count_id: UUID, notes: Optional[str] = None) -> StockCount:
    async with transaction(db):
        count = await get_count(db, ctx, count_id, for_update=True)
        if count.status != IN_PROGRESS:
            raise InvalidStateError(
                f"Only counts in progress can be completed (count is {count.status})",
                count_id=count.id,
                status=count.status,
            )
        total_value = sum((to_decimal(e.quantity) * entry_cost(e) for e in count.entries), ZERO)

        res = await db.execute(
            update(StockCount)
            .where(StockCount.id == count.id, StockCount.status == IN_PROGRESS)
            .values(
                status=COMPLETED,
                completed_at=utcnow(),
                total_value=to_money(total_value),
                notes=notes if notes is not None else count.notes,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConflictError("Count was modified concurrently", count_id=count.id)
    logger.info("count %s completed: %d entries, value %s", count_id, len(count.entries), to_money(total_value))
    return await get_count(db, ctx, count_id)


async def delete_count(db: AsyncSession, ctx: TenantContext, count_id: UUID) -> None:
    async with transaction(db):
        count = await get_count(db, ctx, count_id, for_update=True)
        if count.status == APPROVED:
            raise InvalidStateError("Approved counts cannot be deleted", count_id=count.id)
        await db.delete(count)
    logger.info("count %s deleted", count_id)


async def count_report(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: Optional[UUID] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> CountReport:
    counts = await list_counts(db, ctx, store_id=store_id, status=status, start_date=start_date, end_date=end_date)

    finished = [c for c in counts if c.status in (COMPLETED, APPROVED)]
    total_value = sum((to_decimal(c.total_value) for c in counts if c.total_value is not None), ZERO)
    finished_value = sum((to_decimal(c.total_value) for c in finished if c.total_value is not None), ZERO)
    return CountReport(
        total_counts=len(counts),
        in_progress_counts=sum(1 for c in counts if c.status == IN_PROGRESS),
        completed_counts=sum(1 for c in counts if c.status == COMPLETED),
        approved_counts=sum(1 for c in counts if c.status == APPROVED),
        total_value=to_money(total_value),
        total_discrepancy=to_money(sum((to_decimal(c.discrepancy_value) for c in counts if c.discrepancy_value is not None), ZERO)),
        total_items_counted=sum(int(c.items_counted or 0) for c in counts),
        average_count_value=to_money(finished_value / len(finished)) if finished else to_money(ZERO),
    )
