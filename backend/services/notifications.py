import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from db.notification import Notification

logger = logging.getLogger(__name__)

DISCREPANCY = "DISCREPANCY"


@dataclass
class DiscrepancyEvent:
    count_id: UUID
    account_id: UUID
    store_id: UUID
    count_name: str
    shortages: int
    surpluses: int
    total_discrepancy_value: Decimal
    currency: Optional[str] = None
    type: str = DISCREPANCY

    def payload(self) -> dict:
        data = asdict(self)
        for key in ("count_id", "account_id", "store_id"):
            data[key] = str(data[key])
        data["total_discrepancy_value"] = float(self.total_discrepancy_value)
        return data


class NotificationSink(Protocol):
    async def emit(self, event: DiscrepancyEvent) -> None:
        ...


class DatabaseNotificationSink:
    """
    Stores events as Notification rows on the caller's session.

    Nothing is committed here: the row belongs to the approval transaction
    and disappears with it on rollback.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(self, event: DiscrepancyEvent) -> None:
        parts = []
        if event.shortages:
            parts.append(f"{event.shortages} shortage(s)")
        if event.surpluses:
            parts.append(f"{event.surpluses} surplus(es)")
        value = f"{event.total_discrepancy_value:.2f}"
        if event.currency:
            value = f"{value} {event.currency}"

        self.db.add(
            Notification(
                account_id=event.account_id,
                store_id=event.store_id,
                type=event.type,
                title=f"Stock discrepancies in {event.count_name}",
                message=f"{' and '.join(parts)} adjusted, net value {value}",
                link_url=f"/counts/{event.count_id}",
                payload=event.payload(),
            )
        )
        await self.db.flush()
        logger.info("discrepancy notification queued for count %s", event.count_id)
