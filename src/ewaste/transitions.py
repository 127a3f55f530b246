from __future__ import annotations

from .errors import InvalidState

ORDER_TERMINAL = frozenset({"completed", "cancelled"})
NOT_CANCELLABLE = frozenset({"picked_up", "processing", "completed"})
ASSIGNABLE = frozenset({"pending", "confirmed", "assigned", "in_transit"})
PIN_VERIFIABLE = frozenset({"assigned", "in_transit"})

# Edges reachable through the generic status update. Assignment, PIN
# verification and cancellation have their own operations and checks.
ORDER_STATUS_EDGES: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"cancelled"}),
    "assigned": frozenset({"in_transit", "cancelled"}),
    "in_transit": frozenset({"picked_up", "cancelled"}),
    "picked_up": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

AGENT_STATUS_TARGETS = frozenset({"in_transit"})

TICKET_TERMINAL = frozenset({"closed"})
TICKET_RATEABLE = frozenset({"resolved", "closed"})
TICKET_STATUS_EDGES: dict[str, frozenset[str]] = {
    "open": frozenset({"in_progress", "waiting_customer", "resolved", "closed"}),
    "in_progress": frozenset({"open", "waiting_customer", "resolved", "closed"}),
    "waiting_customer": frozenset({"open", "in_progress", "resolved", "closed"}),
    "resolved": frozenset({"open", "closed"}),
    "closed": frozenset(),
}


def order_transition_allowed(current: str, requested: str, role: str) -> bool:
    if current in ORDER_TERMINAL:
        return False
    if requested not in ORDER_STATUS_EDGES.get(current, frozenset()):
        return False
    if role == "pickup_agent":
        return requested in AGENT_STATUS_TARGETS
    return role in ("manager", "admin")


def check_order_transition(current: str, requested: str, role: str) -> None:
    if not order_transition_allowed(current, requested, role):
        raise InvalidState(f"Cannot change order status from {current} to {requested}")


def ticket_transition_allowed(current: str, requested: str) -> bool:
    return requested in TICKET_STATUS_EDGES.get(current, frozenset())


def check_ticket_transition(current: str, requested: str) -> None:
    if not ticket_transition_allowed(current, requested):
        raise InvalidState(f"Cannot change ticket status from {current} to {requested}")
