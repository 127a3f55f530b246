from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

Role = Literal["customer", "pickup_agent", "manager", "admin"]
OrderStatus = Literal[
    "pending",
    "confirmed",
    "assigned",
    "in_transit",
    "picked_up",
    "processing",
    "completed",
    "cancelled",
]
Condition = Literal["excellent", "good", "fair", "poor", "broken"]
TimeSlot = Literal["morning", "afternoon", "evening"]
PaymentMethod = Literal["cash", "upi", "bank_transfer"]
TicketStatus = Literal["open", "in_progress", "waiting_customer", "resolved", "closed"]
TicketPriority = Literal["low", "medium", "high", "urgent"]
TicketCategory = Literal[
    "order_issue",
    "payment_issue",
    "pickup_issue",
    "account_issue",
    "general_inquiry",
    "complaint",
    "feedback",
]
Unit = Literal["kg", "piece", "set"]

ROLES: tuple[str, ...] = ("customer", "pickup_agent", "manager", "admin")
ORDER_STATUSES: tuple[str, ...] = (
    "pending",
    "confirmed",
    "assigned",
    "in_transit",
    "picked_up",
    "processing",
    "completed",
    "cancelled",
)
ACTIVE_AGENT_STATUSES: tuple[str, ...] = ("assigned", "in_transit", "picked_up")
CONDITIONS: tuple[str, ...] = ("excellent", "good", "fair", "poor", "broken")
TIME_SLOTS: tuple[str, ...] = ("morning", "afternoon", "evening")
PAYMENT_METHODS: tuple[str, ...] = ("cash", "upi", "bank_transfer")
TICKET_STATUSES: tuple[str, ...] = ("open", "in_progress", "waiting_customer", "resolved", "closed")
TICKET_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent")
TICKET_CATEGORIES: tuple[str, ...] = (
    "order_issue",
    "payment_issue",
    "pickup_issue",
    "account_issue",
    "general_inquiry",
    "complaint",
    "feedback",
)
UNITS: tuple[str, ...] = ("kg", "piece", "set")

DEFAULT_CONDITION_MULTIPLIERS: dict[str, float] = {
    "excellent": 1.0,
    "good": 0.8,
    "fair": 0.6,
    "poor": 0.4,
    "broken": 0.2,
}

ORDER_NUMBER_PREFIX = "EW"
TICKET_NUMBER_PREFIX = "ST"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in ("manager", "admin")


@dataclass(frozen=True)
class Subcategory:
    name: str
    price_modifier: float


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    base_price: float
    condition_multipliers: dict[str, float]
    subcategories: tuple[Subcategory, ...] = ()
    unit: Unit = "piece"
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict) -> "Category":
        return cls(
            id=str(row["id"]),
            name=row["name"],
            base_price=float(row["base_price"]),
            condition_multipliers=dict(row.get("condition_multipliers") or {}),
            subcategories=tuple(
                Subcategory(name=s["name"], price_modifier=float(s["price_modifier"]))
                for s in (row.get("subcategories") or [])
            ),
            unit=row.get("unit", "piece"),
            is_active=bool(row.get("is_active", True)),
        )


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def now_iso() -> str:
    return utcnow().isoformat()


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
