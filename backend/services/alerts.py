from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.context import TenantContext
from core.quantities import ZERO
from services import ledger
from services.ledger import StockLevel

LOW_STOCK = "LOW_STOCK"
OVER_STOCK = "OVER_STOCK"

CRITICAL = "critical"
WARNING = "warning"

# Below this share of the minimum level a low-stock alert is critical
CRITICAL_RATIO = Decimal("0.25")

_SEVERITY_RANK = {CRITICAL: 0, WARNING: 1}


@dataclass
class StockAlert:
    item_id: UUID
    item_name: str
    store_id: UUID
    store_name: str
    current_quantity: Decimal
    min_stock_level: Decimal
    max_stock_level: Optional[Decimal]
    unit: str
    alert_type: str
    severity: str


def low_stock_severity(quantity: Decimal, min_stock_level: Decimal) -> str:
    return CRITICAL if quantity < min_stock_level * CRITICAL_RATIO else WARNING


def compute_alerts(levels: Iterable[StockLevel]) -> List[StockAlert]:
    """
    Derive alerts from current stock levels. Pure: nothing is stored.

    Ordered critical first, then by item name; store name and alert type
    break the remaining ties.
    """
    alerts: List[StockAlert] = []
    for lvl in levels:
        if lvl.min_stock_level is not None and lvl.quantity < lvl.min_stock_level:
            alerts.append(
                StockAlert(
                    item_id=lvl.item_id,
                    item_name=lvl.item_name,
                    store_id=lvl.store_id,
                    store_name=lvl.store_name,
                    current_quantity=lvl.quantity,
                    min_stock_level=lvl.min_stock_level,
                    max_stock_level=lvl.max_stock_level,
                    unit=lvl.unit,
                    alert_type=LOW_STOCK,
                    severity=low_stock_severity(lvl.quantity, lvl.min_stock_level),
                )
            )
        if lvl.max_stock_level is not None and lvl.quantity > lvl.max_stock_level:
            alerts.append(
                StockAlert(
                    item_id=lvl.item_id,
                    item_name=lvl.item_name,
                    store_id=lvl.store_id,
                    store_name=lvl.store_name,
                    current_quantity=lvl.quantity,
                    min_stock_level=lvl.min_stock_level or ZERO,
                    max_stock_level=lvl.max_stock_level,
                    unit=lvl.unit,
                    alert_type=OVER_STOCK,
                    severity=WARNING,
                )
            )

    alerts.sort(
        key=lambda a: (
            _SEVERITY_RANK[a.severity],
            a.item_name.casefold(),
            a.store_name.casefold(),
            a.alert_type,
        )
    )
    return alerts


def summarize(alerts: List[StockAlert]) -> Dict[str, int]:
    return {
        "total": len(alerts),
        "critical": sum(1 for a in alerts if a.severity == CRITICAL),
        "warning": sum(1 for a in alerts if a.severity == WARNING),
        "low_stock": sum(1 for a in alerts if a.alert_type == LOW_STOCK),
        "over_stock": sum(1 for a in alerts if a.alert_type == OVER_STOCK),
    }


async def get_alerts(
    db: AsyncSession,
    ctx: TenantContext,
    store_id: Optional[UUID] = None,
    alert_type: Optional[str] = None,
) -> List[StockAlert]:
    alerts = compute_alerts(await ledger.aggregate_all(db, ctx, store_id))
    if alert_type:
        alerts = [a for a in alerts if a.alert_type == alert_type]
    return alerts
