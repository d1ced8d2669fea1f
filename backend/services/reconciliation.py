"""
Count approval: turn a completed count into ledger adjustments.

For every entry the ledger quantity is read, the discrepancy is stored on
the entry and, when it is larger than DISCREPANCY_EPSILON, one ADJUSTMENT
movement is appended. Entry updates, adjustments, the status change and the
discrepancy notification commit together or not at all; a failed approval
leaves the count `completed` so it can simply be approved again.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.context import TenantContext
from core.errors import ConflictError, InvalidStateError, ValidationError
from core.quantities import ZERO, exceeds_epsilon, to_money, to_quantity
from db.account import Account
from db.database import transaction, utcnow
from db.inventory.count import APPROVED, COMPLETED, StockCount
from db.inventory.movement import ADJUSTMENT, REF_COUNT, Movement
from services import counts, ledger
from services.ledger import MovementRequest
from services.notifications import DatabaseNotificationSink, DiscrepancyEvent, NotificationSink

logger = logging.getLogger(__name__)

AS_OF_APPROVAL = "approval"
AS_OF_COUNT_STARTED = "count_started"
EXPECTED_AS_OF_CHOICES = (AS_OF_APPROVAL, AS_OF_COUNT_STARTED)

SURPLUS_REASON = "Count adjustment (surplus)"
SHORTAGE_REASON = "Count adjustment (shortage)"


@dataclass
class ApprovalSummary:
    total_entries: int = 0
    adjustments_created: int = 0
    total_expected_value: Decimal = ZERO
    total_actual_value: Decimal = ZERO
    total_discrepancy_value: Decimal = ZERO


@dataclass
class ApprovalResult:
    stock_count: StockCount
    adjustments: List[Movement] = field(default_factory=list)
    summary: ApprovalSummary = field(default_factory=ApprovalSummary)


def _resolve_as_of(expected_as_of: Optional[str]) -> str:
    mode = (expected_as_of or settings.count_expected_as_of or AS_OF_APPROVAL).strip().lower()
    if mode not in EXPECTED_AS_OF_CHOICES:
        raise ValidationError(
            f"expected_as_of must be one of {', '.join(EXPECTED_AS_OF_CHOICES)}",
            expected_as_of=mode,
        )
    return mode


async def approve_count(
    db: AsyncSession,
    ctx: TenantContext,
    count_id: UUID,
    adjustment_notes: Optional[str] = None,
    *,
    sink: Optional[NotificationSink] = None,
    expected_as_of: Optional[str] = None,
) -> ApprovalResult:
    mode = _resolve_as_of(expected_as_of)
    if sink is None:
        sink = DatabaseNotificationSink(db)

    summary = ApprovalSummary()
    adjustments: List[Movement] = []
    shortages = surpluses = 0

    async with transaction(db):
        count = await counts.get_count(db, ctx, count_id, for_update=True)
        if count.status != COMPLETED:
            raise InvalidStateError(
                f"Only completed counts can be approved (count is {count.status})",
                count_id=count.id,
                status=count.status,
            )
        as_of = count.created_at if mode == AS_OF_COUNT_STARTED else None
        notes = adjustment_notes or f"From count: {count.name}"

        for entry in count.entries:
            if entry.expected_quantity is not None:
                raise InvalidStateError("Count entry was already reconciled", entry_id=entry.id)

            counted = to_quantity(entry.quantity)
            expected = await ledger.aggregate(db, ctx, entry.item_id, count.store_id, as_of=as_of)
            discrepancy = counted - expected
            entry.expected_quantity = expected
            entry.discrepancy = discrepancy

            cost = counts.entry_cost(entry)
            summary.total_entries += 1
            summary.total_expected_value += expected * cost
            summary.total_actual_value += counted * cost
            summary.total_discrepancy_value += discrepancy * cost

            if not exceeds_epsilon(discrepancy):
                continue
            if discrepancy > 0:
                surpluses += 1
            else:
                shortages += 1
            adjustments.append(
                await ledger.append_movement(
                    db,
                    ctx,
                    MovementRequest(
                        item_id=entry.item_id,
                        store_id=count.store_id,
                        quantity=discrepancy,
                        movement_type=ADJUSTMENT,
                        reason=SURPLUS_REASON if discrepancy > 0 else SHORTAGE_REASON,
                        notes=notes,
                        reference_id=count.id,
                        reference_type=REF_COUNT,
                        cost_price=cost,
                    ),
                    item=entry.item,
                )
            )

        summary.adjustments_created = len(adjustments)
        summary.total_expected_value = to_money(summary.total_expected_value)
        summary.total_actual_value = to_money(summary.total_actual_value)
        summary.total_discrepancy_value = to_money(summary.total_discrepancy_value)

        # Entry updates must reach the database before the status flips
        await db.flush()
        res = await db.execute(
            update(StockCount)
            .where(StockCount.id == count.id, StockCount.status == COMPLETED)
            .values(
                status=APPROVED,
                approved_at=utcnow(),
                approved_by=ctx.user_id,
                adjustment_notes=adjustment_notes,
                expected_value=summary.total_expected_value,
                discrepancy_value=summary.total_discrepancy_value,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConflictError("Count was approved concurrently", count_id=count.id)

        if adjustments:
            account = await db.get(Account, ctx.account_id)
            await sink.emit(
                DiscrepancyEvent(
                    count_id=count.id,
                    account_id=ctx.account_id,
                    store_id=count.store_id,
                    count_name=count.name or "",
                    shortages=shortages,
                    surpluses=surpluses,
                    total_discrepancy_value=summary.total_discrepancy_value,
                    currency=account.base_currency if account else settings.default_currency,
                )
            )

    logger.info(
        "count %s approved: %d entries, %d adjustment(s), discrepancy %s",
        count_id, summary.total_entries, summary.adjustments_created, summary.total_discrepancy_value,
    )
    return ApprovalResult(
        stock_count=await counts.get_count(db, ctx, count_id),
        adjustments=adjustments,
        summary=summary,
    )
