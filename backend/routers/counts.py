from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_tenant_context
from core.context import TenantContext
from core.errors import ValidationError
from core.quantities import optional_float
from db.database import get_async_session
from db.inventory.count import StockCount, StockEntry
from routers.stock import movement_out
from schemas.counts import (
    AddEntryCommand,
    CompleteCommand,
    CountApprove,
    CountCommand,
    CountComplete,
    CountCreate,
    DeleteEntryCommand,
    EntryCreate,
    EntryUpdate,
    UpdateEntryCommand,
)
from services import counts as count_service
from services import reconciliation
from services.notifications import DatabaseNotificationSink

router = APIRouter()

COUNT_STATUS_PATTERN = "^(in_progress|completed|approved)$"


def _entry_out(e: StockEntry) -> Dict:
    item = e.__dict__.get("item")
    return {
        "id": e.id,
        "item_id": e.item_id,
        "item_name": item.name if item is not None else None,
        "unit": item.unit if item is not None else None,
        "category_name": item.category.name if item is not None and item.category is not None else None,
        "quantity": float(e.quantity),
        "unit_cost": optional_float(e.unit_cost),
        "notes": e.notes,
        "expected_quantity": optional_float(e.expected_quantity),
        "discrepancy": optional_float(e.discrepancy),
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def _count_out(c: StockCount, include_entries: bool = True) -> Dict:
    out = {
        "id": c.id,
        "store_id": c.store_id,
        "store_name": c.store.name if c.store else None,
        "user_id": c.user_id,
        "name": c.name,
        "status": c.status,
        "notes": c.notes,
        "items_counted": int(c.items_counted or 0),
        "total_value": optional_float(c.total_value),
        "expected_value": optional_float(c.expected_value),
        "discrepancy_value": optional_float(c.discrepancy_value),
        "adjustment_notes": c.adjustment_notes,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "completed_at": c.completed_at.isoformat() if c.completed_at else None,
        "approved_at": c.approved_at.isoformat() if c.approved_at else None,
        "approved_by": c.approved_by,
    }
    if include_entries:
        out["entries"] = [_entry_out(e) for e in c.entries]
    return out


def _date_range(from_date: Optional[date], to_date: Optional[date]):
    start_dt: Optional[datetime] = datetime.combine(from_date, time.min) if from_date else None
    end_dt: Optional[datetime] = (
        datetime.combine(to_date, time.min) + timedelta(days=1) - timedelta(microseconds=1) if to_date else None
    )
    return start_dt, end_dt


@router.get("", response_model=List[Dict])
async def list_counts(
    store_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status", pattern=COUNT_STATUS_PATTERN),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    found = await count_service.list_counts(db, ctx, store_id=store_id, status=status_filter)
    return [_count_out(c, include_entries=False) for c in found]


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def start_count(
    payload: CountCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    return _count_out(await count_service.start_count(db, ctx, payload.store_id, payload.name))


@router.get("/report", response_model=Dict)
async def count_report(
    store_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status", pattern=COUNT_STATUS_PATTERN),
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    start_dt, end_dt = _date_range(from_date, to_date)
    rep = await count_service.count_report(
        db, ctx, store_id=store_id, status=status_filter, start_date=start_dt, end_date=end_dt
    )
    return {
        "total_counts": rep.total_counts,
        "in_progress_counts": rep.in_progress_counts,
        "completed_counts": rep.completed_counts,
        "approved_counts": rep.approved_counts,
        "total_value": float(rep.total_value),
        "total_discrepancy": float(rep.total_discrepancy),
        "total_items_counted": rep.total_items_counted,
        "average_count_value": float(rep.average_count_value),
    }


@router.get("/{count_id}", response_model=Dict)
async def get_count(
    count_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    return _count_out(await count_service.get_count(db, ctx, count_id))


@router.put("/{count_id}", response_model=Dict)
async def apply_count_command(
    count_id: UUID,
    command: CountCommand,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Entry and completion commands on one count, selected by `action`."""
    if isinstance(command, AddEntryCommand):
        await count_service.add_entry(
            db, ctx, count_id, command.item_id, command.quantity, unit_cost=command.unit_cost, notes=command.notes
        )
    elif isinstance(command, UpdateEntryCommand):
        await count_service.update_entry(
            db, ctx, count_id, command.entry_id, command.quantity, unit_cost=command.unit_cost, notes=command.notes
        )
    elif isinstance(command, DeleteEntryCommand):
        await count_service.delete_entry(db, ctx, count_id, command.entry_id)
    elif isinstance(command, CompleteCommand):
        await count_service.complete_count(db, ctx, count_id, notes=command.notes)
    else:
        raise ValidationError("Unsupported count command")
    return _count_out(await count_service.get_count(db, ctx, count_id))


@router.delete("/{count_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_count(
    count_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    await count_service.delete_count(db, ctx, count_id)


@router.post("/{count_id}/entries", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def add_entry(
    count_id: UUID,
    payload: EntryCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    entry = await count_service.add_entry(
        db, ctx, count_id, payload.item_id, payload.quantity, unit_cost=payload.unit_cost, notes=payload.notes
    )
    return _entry_out(entry)


@router.patch("/{count_id}/entries/{entry_id}", response_model=Dict)
async def update_entry(
    count_id: UUID,
    entry_id: UUID,
    payload: EntryUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    entry = await count_service.update_entry(
        db, ctx, count_id, entry_id, payload.quantity, unit_cost=payload.unit_cost, notes=payload.notes
    )
    return _entry_out(entry)


@router.delete("/{count_id}/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(
    count_id: UUID,
    entry_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    await count_service.delete_entry(db, ctx, count_id, entry_id)


@router.post("/{count_id}/complete", response_model=Dict)
async def complete_count(
    count_id: UUID,
    payload: Optional[CountComplete] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    notes = payload.notes if payload else None
    return _count_out(await count_service.complete_count(db, ctx, count_id, notes=notes))


@router.post("/{count_id}/approve", response_model=Dict)
async def approve_count(
    count_id: UUID,
    payload: Optional[CountApprove] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    payload = payload or CountApprove()
    result = await reconciliation.approve_count(
        db,
        ctx,
        count_id,
        payload.adjustment_notes,
        sink=DatabaseNotificationSink(db),
        expected_as_of=payload.expected_as_of,
    )
    s = result.summary
    return {
        "stock_count": _count_out(result.stock_count),
        "adjustments": [movement_out(mv) for mv in result.adjustments],
        "summary": {
            "total_entries": s.total_entries,
            "adjustments_created": s.adjustments_created,
            "total_expected_value": float(s.total_expected_value),
            "total_actual_value": float(s.total_actual_value),
            "total_discrepancy_value": float(s.total_discrepancy_value),
        },
    }
