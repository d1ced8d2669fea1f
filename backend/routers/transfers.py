from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_tenant_context
from core.context import TenantContext
from db.database import get_async_session
from db.inventory.transfer import Transfer
from routers.stock import movement_out
from schemas.transfers import TransferCreate
from services import transfers as transfer_service
from services.transfers import TransferLine

router = APIRouter()


def _transfer_out(tr: Transfer) -> Dict:
    return {
        "id": tr.id,
        "from_store_id": tr.from_store_id,
        "from_store_name": tr.from_store.name if tr.from_store else None,
        "to_store_id": tr.to_store_id,
        "to_store_name": tr.to_store.name if tr.to_store else None,
        "status": tr.status,
        "notes": tr.notes,
        "created_at": tr.created_at.isoformat() if tr.created_at else None,
        "created_by": tr.created_by,
        "completed_at": tr.completed_at.isoformat() if tr.completed_at else None,
        "completed_by": tr.completed_by,
        "items": [
            {
                "id": line.id,
                "item_id": line.item_id,
                "item_name": line.item.name if line.item else None,
                "unit": line.item.unit if line.item else None,
                "quantity": float(line.quantity),
            }
            for line in tr.items
        ],
    }


@router.get("", response_model=List[Dict])
async def list_transfers(
    store_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(PENDING|IN_TRANSIT|COMPLETED|CANCELLED)$"),
    limit: int = Query(50, ge=1, le=500),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    found = await transfer_service.list_transfers(db, ctx, store_id=store_id, status=status_filter, limit=limit)
    return [_transfer_out(tr) for tr in found]


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: TransferCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    tr = await transfer_service.create_transfer(
        db,
        ctx,
        payload.from_store_id,
        payload.to_store_id,
        [TransferLine(item_id=line.item_id, quantity=line.quantity) for line in payload.items],
        notes=payload.notes,
    )
    return _transfer_out(tr)


@router.get("/{transfer_id}", response_model=Dict)
async def get_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    return _transfer_out(await transfer_service.get_transfer(db, ctx, transfer_id))


@router.post("/{transfer_id}/in-transit", response_model=Dict)
async def mark_in_transit(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    return _transfer_out(await transfer_service.mark_in_transit(db, ctx, transfer_id))


@router.post("/{transfer_id}/complete", response_model=Dict)
async def complete_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    movements = await transfer_service.complete_transfer(db, ctx, transfer_id)
    tr = await transfer_service.get_transfer(db, ctx, transfer_id)
    return {
        "transfer": _transfer_out(tr),
        "movements": [movement_out(mv) for mv in movements],
    }


@router.post("/{transfer_id}/cancel", response_model=Dict)
async def cancel_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    return _transfer_out(await transfer_service.cancel_transfer(db, ctx, transfer_id))


@router.delete("/{transfer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transfer(
    transfer_id: UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_async_session),
):
    await transfer_service.delete_transfer(db, ctx, transfer_id)
