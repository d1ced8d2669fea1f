from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_admin_context, get_tenant_context
from core.context import TenantContext
from core.quantities import optional_float
from db.database import get_async_session
from db.inventory.movement import Movement
from schemas.inventory import ItemMerge, MovementBatchCreate, MovementCorrection, MovementCreate, WasteCreate
from services import alerts as alert_service
from services import ledger
from services.alerts import StockAlert
from services.ledger import MovementRequest, StockLevel, WasteLine

router = APIRouter()


def movement_out(mv: Movement) -> Dict:
    item = mv.__dict__.get("item")
    store = mv.__dict__.get("store")
    return {
        "id": mv.id,
        "item_id": mv.item_id,
        "item_name": item.name if item is not None else None,
        "store_id": mv.store_id,
        "store_name": store.name if store is not None else None,
        "type": mv.type,
        "quantity": float(mv.quantity),
        "reason": mv.reason,
        "notes": mv.notes,
        "reference_id": mv.reference_id,
        "reference_type": mv.reference_type,
        "cost_price": optional_float(mv.cost_price),
        "created_at": mv.created_at.isoformat() if mv.created_at else None,
        "created_by": mv.created_by,
    }


def _level_out(lvl: StockLevel) -> Dict:
    return {
        "item_id": lvl.item_id,
        "item_name": lvl.item_name,
        "store_id": lvl.store_id,
        "store_name": lvl.store_name,
        "category_id": lvl.category_id,
        "category_name": lvl.category_name,
        "quantity": float(lvl.quantity),
        "value": float(lvl.value),
        "unit": lvl.unit,
        "min_stock_level": optional_float(lvl.min_stock_level),
        "max_stock_level": optional_float(lvl.max_stock_level),
        "is_low_stock": lvl.is_low_stock,
        "is_over_stock": lvl.is_over_stock,
    }


def _alert_out(a: StockAlert) -> Dict:
    return {
        "item_id": a.item_id,
        "item_name": a.item_name,
        "store_id": a.store_id,
        "store_name": a.store_name,
        "alert_type": a.alert_type,
        "severity": a.severity,
        "current_quantity": float(a.current_quantity),
        "min_stock_level": float(a.min_stock_level),
        "max_stock_level": optional_float(a.max_stock_level),
        "unit": a.unit,
    }


def _movement_request(payload: MovementCreate) -> MovementRequest:
    quantity = payload.quantity
    if payload.normalize_sign:
        quantity = ledger.normalize_quantity(payload.type, quantity)
    return MovementRequest(
        item_id=payload.item_id,
        store_id=payload.store_id,
        quantity=quantity,
        movement_type=payload.type,
        reason=payload.reason,
        notes=payload.notes,
        reference_id=payload.reference_id,
        reference_type=payload.reference_type,
        cost_price=payload.cost_price,
        created_at=payload.created_at,
    )


@router.get("", response_model=List[Dict])
async def get_current_stock(
    store_id: Optional[UUID] = None,
    low_stock_only: bool = False,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    levels = await ledger.aggregate_all(db, ctx, store_id)
    if low_stock_only:
        levels = [lvl for lvl in levels if lvl.is_low_stock]
    return [_level_out(lvl) for lvl in levels]


@router.get("/alerts", response_model=Dict)
async def get_stock_alerts(
    store_id: Optional[UUID] = None,
    alert_type: Optional[str] = Query(None, pattern="^(LOW_STOCK|OVER_STOCK)$"),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    found = await alert_service.get_alerts(db, ctx, store_id=store_id, alert_type=alert_type)
    return {
        "alerts": [_alert_out(a) for a in found],
        "summary": alert_service.summarize(found),
    }


@router.get("/value", response_model=Dict)
async def get_inventory_value(
    store_id: Optional[UUID] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    val = await ledger.inventory_value(db, ctx, store_id)
    return {
        "total_value": float(val.total_value),
        "total_items": val.total_items,
        "currency": val.currency,
        "by_store": [
            {"store_id": row["store_id"], "store_name": row["store_name"], "value": float(row["value"])}
            for row in val.by_store
        ],
    }


@router.get("/movements", response_model=Dict)
async def list_movements(
    store_id: Optional[UUID] = None,
    item_id: Optional[UUID] = None,
    type: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    start_dt: Optional[datetime] = datetime.combine(from_date, time.min) if from_date else None
    # to_date is inclusive
    end_dt: Optional[datetime] = (
        datetime.combine(to_date, time.min) + timedelta(days=1) - timedelta(microseconds=1) if to_date else None
    )
    movements, total = await ledger.list_movements(
        db,
        ctx,
        store_id=store_id,
        item_id=item_id,
        movement_type=type,
        start_date=start_dt,
        end_date=end_dt,
        limit=limit,
        offset=offset,
    )
    return {
        "movements": [movement_out(mv) for mv in movements],
        "pagination": {"total": total, "limit": limit, "offset": offset},
    }


@router.post("/movements", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_movement(
    payload: MovementCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    mv = await ledger.record_movement(db, ctx, _movement_request(payload))
    return movement_out(mv)


@router.post("/movements/batch", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_movements_batch(
    payload: MovementBatchCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Invoice import / POS sync: every line is recorded or none is."""
    movements = await ledger.record_movements(db, ctx, [_movement_request(m) for m in payload.movements])
    return {"movements": [movement_out(mv) for mv in movements], "count": len(movements)}


@router.get("/movements/{movement_id}", response_model=Dict)
async def get_movement(
    movement_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    mv = await ledger.get_movement(db, ctx, movement_id)
    out = movement_out(mv)
    out["effective_quantity"] = float(await ledger.effective_quantity(db, ctx, mv))
    return out


@router.post("/movements/{movement_id}/corrections", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def correct_movement(
    movement_id: UUID,
    payload: MovementCorrection,
    ctx: TenantContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_async_session),
):
    correction = await ledger.correct_movement(
        db, ctx, movement_id, payload.quantity, reason=payload.reason, notes=payload.notes
    )
    return movement_out(correction)


@router.post("/waste", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def record_waste(
    payload: WasteCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    movements, total_value = await ledger.record_waste(
        db,
        ctx,
        payload.store_id,
        [
            WasteLine(
                item_id=line.item_id,
                quantity=line.quantity,
                reason=line.reason,
                reason_id=line.reason_id,
                notes=line.notes,
            )
            for line in payload.items
        ],
    )
    return {
        "movements": [movement_out(mv) for mv in movements],
        "total_value": float(total_value),
    }


@router.post("/items/merge", response_model=Dict)
async def merge_items(
    payload: ItemMerge,
    ctx: TenantContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_async_session),
):
    migrated = await ledger.merge_items(db, ctx, payload.item_to_remove_id, payload.item_to_keep_id)
    return {
        "item_to_keep_id": payload.item_to_keep_id,
        "item_to_remove_id": payload.item_to_remove_id,
        **migrated,
    }
