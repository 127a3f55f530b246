from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from psycopg import Connection

from .. import notifications, receipts, transitions
from ..access import STAFF, parse_id, parse_text, require_owner, require_owner_or_roles, require_role
from ..domain import (
    ACTIVE_AGENT_STATUSES,
    CONDITIONS,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    TIME_SLOTS,
    Actor,
    Category,
    new_id,
    now_iso,
)
from ..errors import InvalidInput, InvalidState, NotFound, Unauthorized
from ..identifiers import generate_pin, order_number
from ..notifications import NotificationDispatcher
from ..pagination import Page, PageRequest
from ..pricing import estimate_item_price, estimate_order_total
from ..repositories.category_repo import CategoryRepository
from ..repositories.order_repo import OrderRepository
from ..repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

PINCODE_RE = re.compile(r"^[0-9]{6}$")


@dataclass
class OrderItemInput:
    category_id: str
    condition: str
    quantity: int
    subcategory: str = ""
    brand: str = ""
    model: str = ""
    description: str = ""
    images: tuple[str, ...] = ()


@dataclass
class AddressInput:
    street: str
    city: str
    state: str
    pincode: str
    landmark: str = ""


@dataclass
class PickupDetailsInput:
    address: AddressInput
    preferred_date: str
    time_slot: str
    contact_number: str
    special_instructions: str = ""


def _timeline_entry(status: str, actor_id: Optional[str], note: str) -> dict:
    return {"status": status, "timestamp": now_iso(), "updated_by": actor_id, "note": note}


def visible_order(order: dict, actor: Actor) -> dict:
    """Copy of ``order`` as ``actor`` may see it; pickup agents never see the PIN."""
    if actor.role != "pickup_agent":
        return order
    shown = dict(order)
    shown["pin_verification"] = {k: v for k, v in order["pin_verification"].items() if k != "pin"}
    return shown


class OrderService:
    def __init__(
        self,
        *,
        order_repo: OrderRepository,
        category_repo: CategoryRepository,
        user_repo: UserRepository,
        notifier: NotificationDispatcher | None = None,
        frontend_url: str = "",
    ) -> None:
        self.order_repo = order_repo
        self.category_repo = category_repo
        self.user_repo = user_repo
        self.notifier = notifier
        self.frontend_url = frontend_url

    # -- intake -------------------------------------------------------------

    def create_order(
        self,
        conn: Connection,
        actor: Actor,
        *,
        items: list[OrderItemInput],
        pickup: PickupDetailsInput,
        pickup_charges: float | None = None,
        payment_method: str | None = None,
    ) -> dict:
        require_role(actor, ("customer",))
        if not items:
            raise InvalidInput("An order needs at least one item.")
        pickup_details = self._validate_pickup(pickup)

        charges = 0.0 if pickup_charges is None else float(pickup_charges)
        if charges < 0:
            raise InvalidInput("Pickup charges cannot be negative.")
        method = payment_method or "cash"
        if method not in PAYMENT_METHODS:
            raise InvalidInput(f"Unknown payment method: {method}")

        processed = []
        for item in items:
            if item.condition not in CONDITIONS:
                raise InvalidInput(f"Unknown item condition: {item.condition}")
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise InvalidInput("Item quantity must be a whole number >= 1.")
            category_id = parse_id(item.category_id, "category id")
            row = self.category_repo.get(conn, category_id)
            if row is None:
                raise NotFound(f"Category not found with id of {category_id}")

            price = estimate_item_price(
                Category.from_row(row),
                condition=item.condition,
                quantity=item.quantity,
                subcategory=item.subcategory or None,
            )
            processed.append(
                {
                    "category_id": category_id,
                    "category_name": row["name"],
                    "subcategory": item.subcategory,
                    "brand": item.brand,
                    "model": item.model,
                    "condition": item.condition,
                    "quantity": item.quantity,
                    "estimated_price": price,
                    "final_price": 0,
                    "images": list(item.images),
                    "description": item.description,
                }
            )

        estimated_total = estimate_order_total(i["estimated_price"] for i in processed)
        now = now_iso()
        order = {
            "id": new_id(),
            "order_number": order_number(self.order_repo.next_number(conn)),
            "customer_id": actor.id,
            "status": "pending",
            "assigned_agent_id": None,
            "items": processed,
            "pickup_details": pickup_details,
            "pin_verification": {"pin": generate_pin(), "is_verified": False, "verified_at": None},
            "pricing": {
                "estimated_total": estimated_total,
                "actual_total": 0,
                "pickup_charges": charges,
                "final_amount": estimated_total + charges,
            },
            "payment": {"method": method, "status": "pending", "transaction_id": None, "paid_at": None},
            "timeline": [_timeline_entry("pending", actor.id, "Order created")],
            "created_at": now,
            "updated_at": now,
        }
        self.order_repo.create(conn, order=order)
        logger.info("Order %s created by %s (estimated %s)", order["order_number"], actor.id, estimated_total)

        customer = self.user_repo.get(conn, actor.id)
        if customer:
            self._notify(notifications.order_confirmation(order, customer, self.frontend_url))
        return order

    def _validate_pickup(self, pickup: PickupDetailsInput) -> dict:
        a = pickup.address
        for name in ("street", "city", "state", "pincode"):
            if not str(getattr(a, name) or "").strip():
                raise InvalidInput(f"Pickup address {name} is required.")
        if not PINCODE_RE.match(a.pincode.strip()):
            raise InvalidInput("Pincode must be 6 digits.")
        if pickup.time_slot not in TIME_SLOTS:
            raise InvalidInput(f"Unknown time slot: {pickup.time_slot}")
        if not str(pickup.contact_number or "").strip():
            raise InvalidInput("Contact number is required.")
        try:
            preferred = date.fromisoformat(str(pickup.preferred_date)[:10])
        except ValueError as e:
            raise InvalidInput("Preferred date must be an ISO date (YYYY-MM-DD).") from e

        return {
            "address": {
                "street": a.street.strip(),
                "city": a.city.strip(),
                "state": a.state.strip(),
                "pincode": a.pincode.strip(),
                "landmark": (a.landmark or "").strip(),
            },
            "preferred_date": preferred.isoformat(),
            "time_slot": pickup.time_slot,
            "contact_number": pickup.contact_number.strip(),
            "special_instructions": (pickup.special_instructions or "").strip(),
        }

    # -- reads --------------------------------------------------------------

    def _load(self, conn: Connection, order_id: str) -> dict:
        oid = parse_id(order_id, "order id")
        order = self.order_repo.get(conn, oid)
        if order is None:
            raise NotFound(f"Order not found with id of {oid}")
        return order

    def get_order(self, conn: Connection, actor: Actor, order_id: str) -> dict:
        order = self._load(conn, order_id)
        if actor.role == "customer" and order["customer_id"] != actor.id:
            raise NotFound(f"Order not found with id of {order['id']}")
        if actor.role == "pickup_agent" and order.get("assigned_agent_id") != actor.id:
            raise NotFound(f"Order not found with id of {order['id']}")
        return order

    def list_orders(
        self,
        conn: Connection,
        actor: Actor,
        *,
        page: PageRequest,
        status: str | None = None,
        search: str | None = None,
    ) -> Page:
        """Role-scoped order listing.

        Customers only see their own orders, pickup agents only the active
        orders assigned to them, managers and admins see everything.
        """
        if status == "all":
            status = None
        if status is not None and status not in ORDER_STATUSES:
            raise InvalidInput(f"Unknown order status: {status}")

        customer_id = agent_id = None
        statuses = [status] if status else None
        if actor.role == "customer":
            customer_id = actor.id
        elif actor.role == "pickup_agent":
            agent_id = actor.id
            active = list(ACTIVE_AGENT_STATUSES)
            statuses = [s for s in active if s == status] if status else active
            if not statuses:
                return Page(items=[], total=0, request=page)

        rows, total = self.order_repo.list(
            conn,
            customer_id=customer_id,
            agent_id=agent_id,
            statuses=statuses,
            search=(search or None) if actor.is_staff else None,
            offset=page.offset,
            limit=page.limit,
        )
        return Page(items=rows, total=total, request=page)

    # -- lifecycle ----------------------------------------------------------

    def cancel_order(self, conn: Connection, actor: Actor, order_id: str, *, reason: str | None = None) -> dict:
        require_role(actor, ("customer", "admin"))
        reason = parse_text(reason, "reason")
        order = self._load(conn, order_id)
        if actor.role != "admin":
            require_owner(actor, order["customer_id"], "Not authorized to cancel this order")

        if order["status"] in transitions.NOT_CANCELLABLE:
            raise InvalidState("Order cannot be cancelled at this stage")
        if order["status"] == "cancelled":
            raise InvalidState("Order is already cancelled")

        order["status"] = "cancelled"
        order["timeline"].append(_timeline_entry("cancelled", actor.id, reason or "Order cancelled by customer"))
        order["updated_at"] = now_iso()
        self.order_repo.save(conn, order=order)
        logger.info("Order %s cancelled by %s", order["order_number"], actor.id)
        return order

    def update_status(
        self,
        conn: Connection,
        actor: Actor,
        order_id: str,
        *,
        status: str,
        note: str | None = None,
        actual_total: float | None = None,
    ) -> dict:
        require_role(actor, ("admin", "manager", "pickup_agent"))
        note = parse_text(note, "note")
        order = self._load(conn, order_id)
        if actor.role == "pickup_agent" and order.get("assigned_agent_id") != actor.id:
            raise Unauthorized("Not authorized to update this order")
        if status not in ORDER_STATUSES:
            raise InvalidInput(f"Unknown order status: {status}")
        transitions.check_order_transition(order["status"], status, actor.role)

        if status == "completed" and actual_total is not None:
            if actual_total < 0:
                raise InvalidInput("Actual total cannot be negative.")
            order["pricing"]["actual_total"] = actual_total

        previous = order["status"]
        order["status"] = status
        order["timeline"].append(_timeline_entry(status, actor.id, note or f"Status updated to {status}"))
        order["updated_at"] = now_iso()
        self.order_repo.save(conn, order=order)
        logger.info("Order %s moved %s -> %s by %s", order["order_number"], previous, status, actor.id)

        if status == "completed":
            customer = self.user_repo.get(conn, order["customer_id"])
            if customer:
                self._notify(notifications.order_completed(order, customer))
        return order

    def assign_agent(self, conn: Connection, actor: Actor, order_id: str, *, agent_id: str) -> dict:
        require_role(actor, ("admin", "manager"))
        order = self._load(conn, order_id)
        aid = parse_id(agent_id, "pickup agent id")
        agent = self.user_repo.get(conn, aid)
        if agent is None or agent["role"] != "pickup_agent" or not agent.get("is_active", True):
            raise NotFound("Pickup agent not found")
        if order["status"] not in transitions.ASSIGNABLE:
            raise InvalidState(f"Cannot assign a pickup agent to an order that is {order['status']}")

        order["assigned_agent_id"] = aid
        order["status"] = "assigned"
        order["timeline"].append(
            _timeline_entry("assigned", actor.id, f"Assigned to {agent['first_name']} {agent['last_name']}")
        )
        order["updated_at"] = now_iso()
        self.order_repo.save(conn, order=order)
        logger.info("Order %s assigned to agent %s by %s", order["order_number"], aid, actor.id)

        customer = self.user_repo.get(conn, order["customer_id"])
        if customer:
            self._notify(notifications.pickup_assigned(order, customer, agent))
        self._notify(notifications.new_assignment(order, agent))
        return order

    def verify_pin(self, conn: Connection, actor: Actor, order_id: str, *, pin: str) -> dict:
        require_role(actor, ("pickup_agent",))
        order = self._load(conn, order_id)
        if order.get("assigned_agent_id") != actor.id:
            raise Unauthorized("Not authorized to verify this order")

        verification = order["pin_verification"]
        if verification.get("is_verified"):
            raise InvalidState("PIN already verified for this order")
        if order["status"] not in transitions.PIN_VERIFIABLE:
            raise InvalidState(f"Cannot verify PIN for an order that is {order['status']}")
        if verification.get("pin") != str(pin or ""):
            logger.warning("Invalid PIN attempt on order %s by %s", order["order_number"], actor.id)
            raise InvalidInput("Invalid PIN")

        now = now_iso()
        verification["is_verified"] = True
        verification["verified_at"] = now
        order["status"] = "picked_up"
        order["timeline"].append(_timeline_entry("picked_up", actor.id, "PIN verified and items picked up"))
        order["updated_at"] = now
        self.order_repo.save(conn, order=order)
        logger.info("Order %s picked up by %s", order["order_number"], actor.id)
        return order

    def receipt(self, conn: Connection, actor: Actor, order_id: str) -> tuple[str, bytes]:
        """PDF pickup receipt for a completed order, as ``(filename, pdf bytes)``."""
        order = self._load(conn, order_id)
        require_owner_or_roles(actor, order["customer_id"], STAFF, "Not authorized to access this receipt")
        if order["status"] != "completed":
            raise InvalidState("Receipt can only be generated for completed orders")

        customer = self.user_repo.get(conn, order["customer_id"]) or {}
        agent = self.user_repo.get(conn, order["assigned_agent_id"]) if order.get("assigned_agent_id") else None
        logger.info("Receipt for order %s rendered for %s", order["order_number"], actor.id)
        return receipts.receipt_filename(order), receipts.render_receipt(order, customer, agent)

    def _notify(self, message: notifications.Message) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.dispatch(message)
        except Exception:
            logger.exception("Failed to dispatch %s notification", message.kind)
