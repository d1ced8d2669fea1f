from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from core.errors import ConflictError, InvalidStateError, ValidationError
from db.database import utcnow
from db.inventory.count import APPROVED, COMPLETED
from db.inventory.movement import ADJUSTMENT, PURCHASE, REF_COUNT, Movement
from db.notification import Notification
from services import counts, ledger, reconciliation
from services.ledger import MovementRequest
from services.notifications import DISCREPANCY, DiscrepancyEvent


class RecordingSink:
    def __init__(self):
        self.events = []

    async def emit(self, event: DiscrepancyEvent) -> None:
        self.events.append(event)


class BrokenSink:
    async def emit(self, event: DiscrepancyEvent) -> None:
        raise RuntimeError("notification store unavailable")


async def _purchase(session, tenant, ctx, item, qty, **kw):
    await ledger.record_movement(
        session,
        ctx,
        MovementRequest(
            item_id=item.id,
            store_id=tenant.store_a.id,
            quantity=Decimal(qty),
            movement_type=PURCHASE,
            **kw,
        ),
    )


async def _completed_count(session, tenant, ctx, *entries):
    count = await counts.start_count(session, ctx, tenant.store_a.id, "Friday close")
    for item, qty in entries:
        await counts.add_entry(session, ctx, count.id, item.id, Decimal(qty))
    return await counts.complete_count(session, ctx, count.id)


async def _count_adjustments(session, count_id):
    res = await session.execute(
        select(Movement).where(Movement.reference_type == REF_COUNT, Movement.reference_id == count_id)
    )
    return list(res.scalars().all())


async def test_shortage_creates_one_negative_adjustment(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "50")
    await ledger.record_movement(
        session,
        ctx,
        MovementRequest(item_id=tenant.chicken.id, store_id=tenant.store_a.id, quantity=Decimal("-5"), movement_type="WASTE"),
    )
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "40"))

    sink = RecordingSink()
    result = await reconciliation.approve_count(session, ctx, count.id, sink=sink)

    (adj,) = result.adjustments
    assert adj.type == ADJUSTMENT
    assert adj.quantity == Decimal("-5")
    assert "shortage" in adj.reason
    assert adj.reference_id == count.id
    assert adj.notes == "From count: Friday close"

    (entry,) = result.stock_count.entries
    assert entry.expected_quantity == Decimal("45")
    assert entry.discrepancy == Decimal("-5")

    assert result.stock_count.status == APPROVED
    assert result.stock_count.approved_by == tenant.user.id
    assert result.stock_count.discrepancy_value == Decimal("-42.5")
    assert result.summary.total_expected_value == Decimal("382.5")
    assert result.summary.total_actual_value == Decimal("340")
    assert result.summary.adjustments_created == 1

    assert await ledger.aggregate(session, ctx, tenant.chicken.id, tenant.store_a.id) == Decimal("40")

    (event,) = sink.events
    assert (event.type, event.shortages, event.surpluses) == (DISCREPANCY, 1, 0)
    assert event.total_discrepancy_value == Decimal("-42.5")


async def test_surplus_and_matching_entries(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "10")
    await _purchase(session, tenant, ctx, tenant.flour, "25")
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "12"), (tenant.flour, "25"))

    result = await reconciliation.approve_count(session, ctx, count.id, "Delivery not booked", sink=RecordingSink())

    (adj,) = result.adjustments
    assert adj.item_id == tenant.chicken.id
    assert adj.quantity == Decimal("2")
    assert "surplus" in adj.reason
    assert adj.notes == "Delivery not booked"
    assert result.summary.total_entries == 2
    assert result.stock_count.adjustment_notes == "Delivery not booked"

    flour_entry = next(e for e in result.stock_count.entries if e.item_id == tenant.flour.id)
    assert flour_entry.discrepancy == Decimal("0")


@pytest.mark.parametrize(
    "counted,adjusted",
    [
        ("45.001", False),
        ("44.999", False),
        ("45.002", True),
        ("44.998", True),
    ],
)
async def test_discrepancy_epsilon(session, tenant, ctx, counted, adjusted):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, counted))

    result = await reconciliation.approve_count(session, ctx, count.id, sink=RecordingSink())

    assert bool(result.adjustments) is adjusted
    if adjusted:
        discrepancy = Decimal(counted) - Decimal("45")
        assert result.adjustments[0].quantity == discrepancy


async def test_second_approval_is_rejected(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    count_id = (await _completed_count(session, tenant, ctx, (tenant.chicken, "40"))).id

    first = await reconciliation.approve_count(session, ctx, count_id, sink=RecordingSink())
    discrepancy_value = first.stock_count.discrepancy_value

    with pytest.raises(InvalidStateError):
        await reconciliation.approve_count(session, ctx, count_id, sink=RecordingSink())

    again = await counts.get_count(session, ctx, count_id)
    assert again.status == APPROVED
    assert again.discrepancy_value == discrepancy_value
    assert len(await _count_adjustments(session, count_id)) == 1


async def test_count_in_progress_cannot_be_approved(session, tenant, ctx):
    count = await counts.start_count(session, ctx, tenant.store_a.id)
    with pytest.raises(InvalidStateError):
        await reconciliation.approve_count(session, ctx, count.id)


async def test_failed_approval_rolls_back_and_can_be_retried(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    await _purchase(session, tenant, ctx, tenant.flour, "30")
    count_id = (await _completed_count(session, tenant, ctx, (tenant.chicken, "40"), (tenant.flour, "31"))).id

    with pytest.raises(RuntimeError):
        await reconciliation.approve_count(session, ctx, count_id, sink=BrokenSink())

    count = await counts.get_count(session, ctx, count_id)
    assert count.status == COMPLETED
    assert count.discrepancy_value is None
    assert all(e.expected_quantity is None and e.discrepancy is None for e in count.entries)
    assert await _count_adjustments(session, count_id) == []
    assert await ledger.aggregate(session, ctx, tenant.chicken.id, tenant.store_a.id) == Decimal("45")

    result = await reconciliation.approve_count(session, ctx, count_id, sink=RecordingSink())
    assert len(result.adjustments) == 2


async def test_default_sink_writes_a_notification(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    await _purchase(session, tenant, ctx, tenant.flour, "30")
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "40"), (tenant.flour, "31"))

    await reconciliation.approve_count(session, ctx, count.id)

    (note,) = (await session.execute(select(Notification))).scalars().all()
    assert note.type == DISCREPANCY
    assert note.account_id == tenant.account.id
    assert note.store_id == tenant.store_a.id
    assert note.payload["shortages"] == 1
    assert note.payload["surpluses"] == 1
    assert note.payload["count_id"] == str(count.id)
    assert note.link_url == f"/counts/{count.id}"


async def test_no_notification_without_adjustments(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "45"))

    await reconciliation.approve_count(session, ctx, count.id)

    assert (await session.execute(select(Notification))).scalars().all() == []


async def test_expected_quantity_can_be_pinned_to_count_start(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45", created_at=utcnow() - timedelta(minutes=1))
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "45"))
    # delivered while the count was running
    await _purchase(session, tenant, ctx, tenant.chicken, "10")

    pinned = await reconciliation.approve_count(
        session, ctx, count.id, sink=RecordingSink(), expected_as_of="count_started"
    )

    assert pinned.adjustments == []
    assert pinned.stock_count.entries[0].expected_quantity == Decimal("45")


async def test_expected_quantity_at_approval_includes_late_movements(session, tenant, ctx):
    await _purchase(session, tenant, ctx, tenant.chicken, "45")
    count = await _completed_count(session, tenant, ctx, (tenant.chicken, "45"))
    await _purchase(session, tenant, ctx, tenant.chicken, "10")

    result = await reconciliation.approve_count(session, ctx, count.id, sink=RecordingSink(), expected_as_of="approval")

    (adj,) = result.adjustments
    assert adj.quantity == Decimal("-10")


async def test_unknown_expected_as_of(session, tenant, ctx):
    count = await _completed_count(session, tenant, ctx)
    with pytest.raises(ValidationError):
        await reconciliation.approve_count(session, ctx, count.id, expected_as_of="yesterday")


async def test_concurrent_approval_only_adjusts_once(session_maker, tenant, ctx, monkeypatch):
    async with session_maker() as setup:
        await _purchase(setup, tenant, ctx, tenant.chicken, "45")
        count = await _completed_count(setup, tenant, ctx, (tenant.chicken, "40"))

    async with session_maker() as slow, session_maker() as fast:
        stale = await counts.get_count(slow, ctx, count.id)
        await slow.commit()

        await reconciliation.approve_count(fast, ctx, count.id, sink=RecordingSink())

        real_get_count = counts.get_count

        async def stale_then_real(db, ctx_, count_id, **kwargs):
            if kwargs.get("for_update"):
                return stale
            return await real_get_count(db, ctx_, count_id, **kwargs)

        monkeypatch.setattr(counts, "get_count", stale_then_real)
        with pytest.raises(ConflictError):
            await reconciliation.approve_count(slow, ctx, count.id, sink=RecordingSink())
        monkeypatch.undo()

        assert len(await _count_adjustments(slow, count.id)) == 1
        assert await ledger.aggregate(slow, ctx, tenant.chicken.id, tenant.store_a.id) == Decimal("40")
