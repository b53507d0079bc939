# ticketbot/domain.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class ChefStatus(str, Enum):
    OPEN = "OPEN"
    BUSY = "BUSY"
    CLOSED = "CLOSED"


class OrderType(str, Enum):
    DOORDASH = "doordash"
    UBEREATS = "ubereats"

    @property
    def label(self) -> str:
        return "DoorDash" if self is OrderType.DOORDASH else "UberEats"


# CLOSED is the only offline marker: OPEN and BUSY chefs may both claim
OFFLINE_STATUSES = frozenset({ChefStatus.CLOSED})


@dataclass(frozen=True)
class ChefRecord:
    user_id: str
    username: str
    status: ChefStatus
    debt_amount: Decimal
    total_completed: int
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class OrderRecord:
    id: int
    chef_id: str
    customer_id: str
    order_type: OrderType
    amount: Decimal
    completed_at: datetime
