from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from psycopg import Connection

from .. import notifications, transitions
from ..access import (
    ANY_ROLE,
    STAFF,
    parse_id,
    parse_text,
    require_owner,
    require_owner_or_roles,
    require_role,
)
from ..domain import (
    TICKET_CATEGORIES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    Actor,
    new_id,
    now_iso,
    utcnow,
)
from ..errors import InvalidInput, InvalidState, NotFound, Unauthorized
from ..identifiers import ticket_number
from ..notifications import NotificationDispatcher
from ..pagination import Page, PageRequest
from ..repositories.order_repo import OrderRepository
from ..repositories.ticket_repo import TicketRepository
from ..repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

MAX_SUBJECT = 200
MAX_DESCRIPTION = 2000
MAX_MESSAGE = 1000
STATS_WINDOW = timedelta(days=7)


def _required_text(value: Optional[str], field: str, max_len: int) -> str:
    text = (parse_text(value, field) or "").strip()
    if not text:
        raise InvalidInput(f"{field} is required.")
    if len(text) > max_len:
        raise InvalidInput(f"{field} cannot be longer than {max_len} characters.")
    return text


def _filter_value(value: Optional[str], allowed: tuple[str, ...], field: str) -> Optional[str]:
    if value in (None, "", "all"):
        return None
    if value not in allowed:
        raise InvalidInput(f"Unknown {field}: {value}")
    return value


def visible_ticket(ticket: dict, actor: Actor) -> dict:
    """Copy of ``ticket`` as ``actor`` may see it; internal notes are staff-only."""
    if actor.is_staff:
        return ticket
    shown = dict(ticket)
    shown["messages"] = [m for m in ticket["messages"] if not m.get("is_internal")]
    return shown


class TicketService:
    def __init__(
        self,
        *,
        ticket_repo: TicketRepository,
        order_repo: OrderRepository,
        user_repo: UserRepository,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.ticket_repo = ticket_repo
        self.order_repo = order_repo
        self.user_repo = user_repo
        self.notifier = notifier

    def create_ticket(
        self,
        conn: Connection,
        actor: Actor,
        *,
        subject: str,
        description: str,
        category: str,
        priority: str | None = None,
        order_id: str | None = None,
    ) -> dict:
        require_role(actor, ("customer",))
        subject = _required_text(subject, "Subject", MAX_SUBJECT)
        description = _required_text(description, "Description", MAX_DESCRIPTION)
        if category not in TICKET_CATEGORIES:
            raise InvalidInput(f"Unknown ticket category: {category}")
        priority = priority or "medium"
        if priority not in TICKET_PRIORITIES:
            raise InvalidInput(f"Unknown ticket priority: {priority}")

        linked_order = None
        if order_id:
            oid = parse_id(order_id, "order id")
            order = self.order_repo.get(conn, oid)
            if order is None or order["customer_id"] != actor.id:
                raise NotFound(f"Order not found with id of {oid}")
            linked_order = oid

        now = now_iso()
        ticket = {
            "id": new_id(),
            "ticket_number": ticket_number(self.ticket_repo.next_number(conn)),
            "customer_id": actor.id,
            "order_id": linked_order,
            "subject": subject,
            "description": description,
            "category": category,
            "priority": priority,
            "status": "open",
            "assigned_to": None,
            "messages": [],
            "resolution": None,
            "customer_rating": None,
            "tags": [],
            "last_activity_at": now,
            "created_at": now,
            "updated_at": now,
        }
        self.ticket_repo.create(conn, ticket=ticket)
        logger.info("Ticket %s opened by %s", ticket["ticket_number"], actor.id)

        customer = self.user_repo.get(conn, actor.id)
        if customer and self.notifier is not None:
            try:
                self.notifier.dispatch(notifications.ticket_created(ticket, customer))
            except Exception:
                logger.exception("Failed to dispatch ticket notification for %s", ticket["ticket_number"])
        return ticket

    def _load(self, conn: Connection, ticket_id: str) -> dict:
        tid = parse_id(ticket_id, "ticket ID")
        ticket = self.ticket_repo.get(conn, tid)
        if ticket is None:
            raise NotFound(f"Support ticket not found with id of {tid}")
        return ticket

    def get_ticket(self, conn: Connection, actor: Actor, ticket_id: str) -> dict:
        ticket = self._load(conn, ticket_id)
        if not actor.is_staff and ticket["customer_id"] != actor.id:
            raise NotFound(f"Support ticket not found with id of {ticket['id']}")
        return visible_ticket(ticket, actor)

    def list_own(self, conn: Connection, actor: Actor, *, page: PageRequest, status: str | None = None) -> Page:
        require_role(actor, ANY_ROLE)
        rows, total = self.ticket_repo.list(
            conn,
            customer_id=actor.id,
            status=_filter_value(status, TICKET_STATUSES, "ticket status"),
            offset=page.offset,
            limit=page.limit,
        )
        return Page(items=[visible_ticket(t, actor) for t in rows], total=total, request=page)

    def list_all(
        self,
        conn: Connection,
        actor: Actor,
        *,
        page: PageRequest,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
    ) -> Page:
        require_role(actor, STAFF)
        rows, total = self.ticket_repo.list(
            conn,
            # managers only work the tickets assigned to them
            assigned_to=actor.id if actor.role == "manager" else None,
            status=_filter_value(status, TICKET_STATUSES, "ticket status"),
            priority=_filter_value(priority, TICKET_PRIORITIES, "ticket priority"),
            category=_filter_value(category, TICKET_CATEGORIES, "ticket category"),
            offset=page.offset,
            limit=page.limit,
        )
        return Page(items=rows, total=total, request=page)

    def add_message(
        self,
        conn: Connection,
        actor: Actor,
        ticket_id: str,
        *,
        message: str,
        is_internal: bool = False,
        attachments: list[str] | None = None,
    ) -> dict:
        ticket = self._load(conn, ticket_id)
        require_owner_or_roles(actor, ticket["customer_id"], STAFF, "Not authorized to access this ticket")
        if is_internal and not actor.is_staff:
            raise Unauthorized("Not authorized to add internal messages")
        text = _required_text(message, "Message", MAX_MESSAGE)
        if attachments is not None and (
            not isinstance(attachments, list) or not all(isinstance(a, str) for a in attachments)
        ):
            raise InvalidInput("attachments must be a list of strings.")

        now = now_iso()
        ticket["messages"].append(
            {
                "sender_id": actor.id,
                "message": text,
                "timestamp": now,
                "is_internal": bool(is_internal),
                "attachments": list(attachments or []),
            }
        )
        if ticket["customer_id"] == actor.id and ticket["status"] == "waiting_customer":
            ticket["status"] = "open"
        ticket["last_activity_at"] = now
        ticket["updated_at"] = now
        self.ticket_repo.save(conn, ticket=ticket)
        return visible_ticket(ticket, actor)

    def update_status(
        self,
        conn: Connection,
        actor: Actor,
        ticket_id: str,
        *,
        status: str,
        resolution_note: str | None = None,
    ) -> dict:
        require_role(actor, STAFF)
        ticket = self._load(conn, ticket_id)
        if status not in TICKET_STATUSES:
            raise InvalidInput(f"Unknown ticket status: {status}")
        resolution_note = parse_text(resolution_note, "resolution_note")
        transitions.check_ticket_transition(ticket["status"], status)

        now = now_iso()
        ticket["status"] = status
        if status in ("resolved", "closed"):
            ticket["resolution"] = {
                "resolved_by": actor.id,
                "resolution_note": resolution_note or "Ticket resolved",
                "resolved_at": now,
            }
        ticket["updated_at"] = now
        self.ticket_repo.save(conn, ticket=ticket)
        logger.info("Ticket %s set to %s by %s", ticket["ticket_number"], status, actor.id)
        return ticket

    def assign(self, conn: Connection, actor: Actor, ticket_id: str, *, assignee_id: str) -> dict:
        require_role(actor, STAFF)
        ticket = self._load(conn, ticket_id)
        aid = parse_id(assignee_id, "assignee id")
        assignee = self.user_repo.get(conn, aid)
        if assignee is None or assignee["role"] not in STAFF or not assignee.get("is_active", True):
            raise NotFound("Staff member not found")
        if ticket["status"] in ("resolved", "closed"):
            raise InvalidState(f"Cannot assign a ticket that is {ticket['status']}")

        ticket["assigned_to"] = aid
        ticket["status"] = "in_progress"
        ticket["updated_at"] = now_iso()
        self.ticket_repo.save(conn, ticket=ticket)
        logger.info("Ticket %s assigned to %s by %s", ticket["ticket_number"], aid, actor.id)
        return ticket

    def rate(
        self,
        conn: Connection,
        actor: Actor,
        ticket_id: str,
        *,
        rating: int,
        feedback: str | None = None,
    ) -> dict:
        require_role(actor, ("customer",))
        ticket = self._load(conn, ticket_id)
        require_owner(actor, ticket["customer_id"], "Not authorized to rate this ticket")
        if ticket["status"] not in transitions.TICKET_RATEABLE:
            raise InvalidState("Can only rate resolved tickets")
        if ticket.get("customer_rating"):
            raise InvalidState("Ticket has already been rated")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidInput("Rating must be a whole number from 1 to 5.")
        feedback = parse_text(feedback, "feedback")

        now = now_iso()
        ticket["customer_rating"] = {"rating": rating, "feedback": feedback or "", "rated_at": now}
        ticket["updated_at"] = now
        self.ticket_repo.save(conn, ticket=ticket)
        return visible_ticket(ticket, actor)

    def stats(self, conn: Connection, actor: Actor, *, now: datetime | None = None) -> dict:
        require_role(actor, STAFF)
        now = now or utcnow()
        counts = {s: self.ticket_repo.count(conn, status=s) for s in TICKET_STATUSES}
        return {
            "total": sum(counts.values()),
            **counts,
            "urgent": self.ticket_repo.count(conn, priority="urgent"),
            "high": self.ticket_repo.count(conn, priority="high"),
            "this_week": self.ticket_repo.count(conn, created_since=now - STATS_WINDOW),
        }
