from dataclasses import dataclass
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class TenantContext:
    """Who is calling and which account every read/write is scoped to."""

    account_id: UUID
    user_id: Optional[UUID] = None
