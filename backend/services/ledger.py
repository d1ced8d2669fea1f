"""
Movement ledger.

Current stock is never stored: every read sums the signed movements for an
(item, store) pair. Writes only ever insert rows; a wrong manual movement is
fixed with a correction movement that references it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.context import TenantContext
from core.errors import InvalidStateError, ValidationError, require_found
from core.quantities import ZERO, exceeds_epsilon, to_decimal, to_money, to_quantity
from db.account import Account, Store
from db.database import transaction, utcnow
from db.item import Category, Item
from db.inventory.count import StockEntry
from db.inventory.movement import (
    ADJUSTMENT,
    INBOUND_TYPES,
    MOVEMENT_TYPES,
    OUTBOUND_TYPES,
    REF_CORRECTION,
    REF_MANUAL,
    REF_WASTE_REASON,
    WASTE,
    Movement,
)
from db.inventory.transfer import TransferItem

logger = logging.getLogger(__name__)


@dataclass
class MovementRequest:
    item_id: UUID
    store_id: UUID
    quantity: Decimal
    movement_type: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    reference_id: Optional[UUID] = None
    reference_type: Optional[str] = None
    cost_price: Optional[Decimal] = None
    # Backdated producers (invoice import) may pin the timestamp
    created_at: Optional[datetime] = None


@dataclass
class WasteLine:
    item_id: UUID
    quantity: Decimal
    reason: Optional[str] = None
    reason_id: Optional[UUID] = None
    notes: Optional[str] = None


@dataclass
class StockLevel:
    item_id: UUID
    item_name: str
    store_id: UUID
    store_name: str
    quantity: Decimal
    value: Decimal
    unit: str
    min_stock_level: Optional[Decimal] = None
    max_stock_level: Optional[Decimal] = None
    category_id: Optional[UUID] = None
    category_name: Optional[str] = None
    is_low_stock: bool = False
    is_over_stock: bool = False


@dataclass
class InventoryValue:
    total_value: Decimal
    total_items: int
    currency: str
    by_store: List[Dict] = field(default_factory=list)


def threshold(level) -> Optional[Decimal]:
    """A stock threshold of 0 or NULL means 'not set'."""
    if level is None:
        return None
    d = to_decimal(level)
    return d if d > 0 else None


def normalize_quantity(movement_type: str, quantity) -> Decimal:
    """
    Force the sign a producer means for well-known types.

    Inbound types become positive, outbound types negative; ADJUSTMENT keeps
    the caller's sign.
    """
    try:
        q = to_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e))
    if movement_type in INBOUND_TYPES:
        return abs(q)
    if movement_type in OUTBOUND_TYPES:
        return -abs(q)
    return q


def validate_quantity(movement_type: str, quantity) -> Decimal:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type '{movement_type}'", type=movement_type)
    try:
        q = to_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e))
    if q == 0:
        raise ValidationError("quantity must not be zero")
    if movement_type in INBOUND_TYPES and q < 0:
        raise ValidationError(f"{movement_type} movements must have a positive quantity", quantity=float(q))
    if movement_type in OUTBOUND_TYPES and q > 0:
        raise ValidationError(f"{movement_type} movements must have a negative quantity", quantity=float(q))
    return q


def validate_price(value, name: str = "cost_price") -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = to_money(value)
    except ValueError as e:
        raise ValidationError(str(e), field=name)
    if price < 0:
        raise ValidationError(f"{name} cannot be negative", field=name)
    return price


async def load_item(db: AsyncSession, ctx: TenantContext, item_id: UUID) -> Item:
    res = await db.execute(select(Item).where(Item.id == item_id, Item.account_id == ctx.account_id))
    return require_found(res.scalar_one_or_none(), "Item", item_id)


async def load_store(db: AsyncSession, ctx: TenantContext, store_id: UUID) -> Store:
    res = await db.execute(select(Store).where(Store.id == store_id, Store.account_id == ctx.account_id))
    return require_found(res.scalar_one_or_none(), "Store", store_id)


async def append_movement(
    db: AsyncSession,
    ctx: TenantContext,
    req: MovementRequest,
    *,
    item: Optional[Item] = None,
) -> Movement:
    """
    Validate and insert one movement inside the caller's transaction.

    Does not commit: transfers and reconciliation append several movements
    and commit them together with their own state change.
    """
    quantity = validate_quantity(req.movement_type, req.quantity)
    cost_price = validate_price(req.cost_price)
    created_at = req.created_at
    if created_at is not None and created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
    if created_at is not None and created_at > utcnow():
        raise ValidationError("Movements cannot be dated in the future", created_at=created_at.isoformat())
    if item is None or item.id != req.item_id:
        item = await load_item(db, ctx, req.item_id)
    await load_store(db, ctx, req.store_id)

    if cost_price is None:
        cost_price = item.cost_price
    movement = Movement(
        account_id=ctx.account_id,
        item_id=req.item_id,
        store_id=req.store_id,
        quantity=quantity,
        type=req.movement_type,
        reason=req.reason,
        notes=req.notes,
        reference_id=req.reference_id,
        reference_type=req.reference_type or REF_MANUAL,
        cost_price=to_money(cost_price) if cost_price is not None else None,
        created_by=ctx.user_id,
    )
    if created_at is not None:
        movement.created_at = created_at
    db.add(movement)
    await db.flush()
    return movement


async def record_movement(db: AsyncSession, ctx: TenantContext, req: MovementRequest) -> Movement:
    async with transaction(db):
        movement = await append_movement(db, ctx, req)
    logger.info(
        "movement %s recorded: %s %s item=%s store=%s",
        movement.id, movement.type, movement.quantity, movement.item_id, movement.store_id,
    )
    return movement


async def record_movements(db: AsyncSession, ctx: TenantContext, reqs: Sequence[MovementRequest]) -> List[Movement]:
    """Batch producers (invoice import, POS sync): all lines or none."""
    if not reqs:
        raise ValidationError("At least one movement is required")
    out: List[Movement] = []
    async with transaction(db):
        for req in reqs:
            out.append(await append_movement(db, ctx, req))
    logger.info("batch of %d movements recorded", len(out))
    return out


async def record_waste(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: UUID,
    lines: Sequence[WasteLine],
) -> Tuple[List[Movement], Decimal]:
    """
    Record waste for one or more items; the quantity is always booked negative.

    Returns the movements and the total value lost at recorded cost.
    """
    if not lines:
        raise ValidationError("At least one waste line is required")
    movements: List[Movement] = []
    async with transaction(db):
        await load_store(db, ctx, store_id)
        for line in lines:
            movements.append(
                await append_movement(
                    db,
                    ctx,
                    MovementRequest(
                        item_id=line.item_id,
                        store_id=store_id,
                        quantity=normalize_quantity(WASTE, line.quantity),
                        movement_type=WASTE,
                        reason=line.reason,
                        notes=line.notes,
                        reference_id=line.reason_id,
                        reference_type=REF_WASTE_REASON,
                    ),
                )
            )

    total_value = sum(
        (abs(to_decimal(m.quantity)) * to_decimal(m.cost_price) for m in movements),
        ZERO,
    )
    return movements, to_money(total_value)


async def aggregate(
    db: AsyncSession,
    ctx: TenantContext,
    item_id: UUID,
    store_id: Optional[UUID] = None,
    as_of: Optional[datetime] = None,
) -> Decimal:
    """
    Sum of movements for an item (at one store, or all).

    With `as_of` only movements strictly before it count; without it, those
    recorded up to now.
    """
    stmt = (
        select(func.coalesce(func.sum(Movement.quantity), 0))
        .where(Movement.account_id == ctx.account_id)
        .where(Movement.item_id == item_id)
    )
    if store_id is not None:
        stmt = stmt.where(Movement.store_id == store_id)
    if as_of is not None:
        stmt = stmt.where(Movement.created_at < as_of)
    else:
        stmt = stmt.where(Movement.created_at <= utcnow())
    res = await db.execute(stmt)
    return to_quantity(res.scalar_one())


async def aggregate_all(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: Optional[UUID] = None,
) -> List[StockLevel]:
    """Current stock per (item, store) joined with item metadata, sorted by item name."""
    totals = (
        select(
            Movement.item_id.label("item_id"),
            Movement.store_id.label("store_id"),
            func.sum(Movement.quantity).label("quantity"),
        )
        .where(Movement.account_id == ctx.account_id, Movement.created_at <= utcnow())
        .group_by(Movement.item_id, Movement.store_id)
    )
    if store_id is not None:
        totals = totals.where(Movement.store_id == store_id)
    totals = totals.subquery()

    stmt = (
        select(
            Item,
            totals.c.store_id,
            totals.c.quantity,
            Store.name.label("store_name"),
            Category.name.label("category_name"),
        )
        .join(totals, totals.c.item_id == Item.id)
        .join(Store, Store.id == totals.c.store_id)
        .outerjoin(Category, Category.id == Item.category_id)
    )
    res = await db.execute(stmt)

    out: List[StockLevel] = []
    for it, sid, qty, store_name, category_name in res.all():
        quantity = to_quantity(qty)
        min_level = threshold(it.min_stock_level)
        max_level = threshold(it.max_stock_level)
        out.append(
            StockLevel(
                item_id=it.id,
                item_name=it.name,
                store_id=sid,
                store_name=store_name,
                quantity=quantity,
                value=to_money(quantity * to_decimal(it.cost_price)),
                unit=it.unit or "unit",
                min_stock_level=min_level,
                max_stock_level=max_level,
                category_id=it.category_id,
                category_name=category_name,
                is_low_stock=min_level is not None and quantity < min_level,
                is_over_stock=max_level is not None and quantity > max_level,
            )
        )
    out.sort(key=lambda s: (s.item_name.casefold(), s.store_name.casefold()))
    return out


async def inventory_value(db: AsyncSession, ctx: TenantContext, store_id: Optional[UUID] = None) -> InventoryValue:
    levels = await aggregate_all(db, ctx, store_id)

    by_store: Dict[UUID, Dict] = {}
    total = ZERO
    for lvl in levels:
        total += lvl.value
        row = by_store.setdefault(lvl.store_id, {"store_id": lvl.store_id, "store_name": lvl.store_name, "value": ZERO})
        row["value"] += lvl.value

    account = await db.get(Account, ctx.account_id)
    currency = (account.base_currency if account and account.base_currency else settings.default_currency)
    return InventoryValue(
        total_value=to_money(total),
        total_items=len(levels),
        currency=currency,
        by_store=sorted(by_store.values(), key=lambda r: r["value"], reverse=True),
    )


async def list_movements(
    db: AsyncSession,
    ctx: TenantContext,
    *,
    store_id: Optional[UUID] = None,
    item_id: Optional[UUID] = None,
    movement_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[Movement], int]:
    filters = [Movement.account_id == ctx.account_id]
    if store_id is not None:
        filters.append(Movement.store_id == store_id)
    if item_id is not None:
        filters.append(Movement.item_id == item_id)
    if movement_type:
        filters.append(Movement.type == movement_type)
    if start_date is not None:
        filters.append(Movement.created_at >= start_date)
    if end_date is not None:
        filters.append(Movement.created_at <= end_date)

    total = (await db.execute(select(func.count()).select_from(Movement).where(*filters))).scalar_one()
    res = await db.execute(
        select(Movement)
        .options(selectinload(Movement.item), selectinload(Movement.store))
        .where(*filters)
        .order_by(Movement.created_at.desc(), Movement.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all()), int(total or 0)


async def get_movement(db: AsyncSession, ctx: TenantContext, movement_id: UUID) -> Movement:
    res = await db.execute(
        select(Movement)
        .options(selectinload(Movement.item), selectinload(Movement.store))
        .where(Movement.id == movement_id, Movement.account_id == ctx.account_id)
    )
    return require_found(res.scalar_one_or_none(), "Movement", movement_id)


async def effective_quantity(db: AsyncSession, ctx: TenantContext, movement: Movement) -> Decimal:
    """Original quantity plus every correction booked against it."""
    res = await db.execute(
        select(func.coalesce(func.sum(Movement.quantity), 0))
        .where(Movement.account_id == ctx.account_id)
        .where(Movement.reference_type == REF_CORRECTION)
        .where(Movement.reference_id == movement.id)
    )
    return to_quantity(to_decimal(movement.quantity) + to_decimal(res.scalar_one()))


async def correct_movement(
    db: AsyncSession,
    ctx: TenantContext,
    movement_id: UUID,
    quantity,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Movement:
    """
    Bring a manual movement to `quantity` by appending the difference.

    Correcting to 0 voids it. Only manual movements can be corrected; the
    ones produced by transfers, counts, invoices or POS sync are owned by
    their producer.
    """
    original = await get_movement(db, ctx, movement_id)
    if original.reference_type != REF_MANUAL:
        raise InvalidStateError("Only manual movements can be corrected", reference_type=original.reference_type)

    try:
        target = to_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e))
    if original.type in INBOUND_TYPES and target < 0:
        raise ValidationError(f"{original.type} movements cannot be corrected below zero")
    if original.type in OUTBOUND_TYPES and target > 0:
        raise ValidationError(f"{original.type} movements cannot be corrected above zero")

    async with transaction(db):
        delta = target - await effective_quantity(db, ctx, original)
        if not exceeds_epsilon(delta):
            raise ValidationError("Correction does not change the movement")
        correction = await append_movement(
            db,
            ctx,
            MovementRequest(
                item_id=original.item_id,
                store_id=original.store_id,
                quantity=delta,
                movement_type=ADJUSTMENT,
                reason=reason or ("Void" if target == 0 else "Correction"),
                notes=notes,
                reference_id=original.id,
                reference_type=REF_CORRECTION,
                cost_price=original.cost_price,
            ),
        )
    logger.info("movement %s corrected by %s (%s)", original.id, delta, correction.id)
    return correction


async def merge_items(
    db: AsyncSession,
    ctx: TenantContext,
    item_to_remove_id: UUID,
    item_to_keep_id: UUID,
) -> Dict[str, int]:
    """
    Fold a duplicate item into the one being kept.

    Every relation that points at the removed item is re-pointed in one
    transaction, then the item is deleted. If any step fails nothing changes.
    """
    if item_to_remove_id == item_to_keep_id:
        raise ValidationError("Cannot merge an item with itself")

    async with transaction(db):
        removed = await load_item(db, ctx, item_to_remove_id)
        await load_item(db, ctx, item_to_keep_id)

        moved = await db.execute(
            update(Movement)
            .where(Movement.account_id == ctx.account_id, Movement.item_id == item_to_remove_id)
            .values(item_id=item_to_keep_id)
            .execution_options(synchronize_session=False)
        )
        entries = await db.execute(
            update(StockEntry)
            .where(StockEntry.item_id == item_to_remove_id)
            .values(item_id=item_to_keep_id)
            .execution_options(synchronize_session=False)
        )
        transfer_lines = await db.execute(
            update(TransferItem)
            .where(TransferItem.item_id == item_to_remove_id)
            .values(item_id=item_to_keep_id)
            .execution_options(synchronize_session=False)
        )
        await db.delete(removed)

    result = {
        "migrated_movements": int(moved.rowcount or 0),
        "migrated_count_entries": int(entries.rowcount or 0),
        "migrated_transfer_items": int(transfer_lines.rowcount or 0),
    }
    logger.info("item %s merged into %s: %s", item_to_remove_id, item_to_keep_id, result)
    return result
