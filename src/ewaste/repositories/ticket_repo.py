from __future__ import annotations

from datetime import datetime

from psycopg import Connection
from psycopg.types.json import Jsonb

from ..domain import parse_iso
from .rows import fetch_all, fetch_one

COLUMNS = (
    "id, ticket_number, customer_id, order_id, subject, description, category, priority, "
    "status, assigned_to, messages, resolution, customer_rating, tags, last_activity_at, "
    "created_at, updated_at"
)


def _json_or_null(value):
    return Jsonb(value) if value is not None else None


class TicketRepository:
    def next_number(self, conn: Connection) -> int:
        return int(conn.execute("SELECT nextval('ticket_number_seq');").fetchone()[0])

    def create(self, conn: Connection, *, ticket: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO support_ticket(id, ticket_number, customer_id, order_id, subject, description,
                                       category, priority, status, assigned_to, messages, tags,
                                       last_activity_at, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (
                ticket["id"],
                ticket["ticket_number"],
                ticket["customer_id"],
                ticket.get("order_id"),
                ticket["subject"],
                ticket["description"],
                ticket["category"],
                ticket["priority"],
                ticket["status"],
                ticket.get("assigned_to"),
                Jsonb(ticket["messages"]),
                Jsonb(ticket.get("tags", [])),
                parse_iso(ticket["last_activity_at"]),
                parse_iso(ticket["created_at"]),
                parse_iso(ticket["updated_at"]),
            ),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, ticket_id: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM support_ticket WHERE id = %s;", (ticket_id,))
        return fetch_one(cur)

    def save(self, conn: Connection, *, ticket: dict) -> None:
        conn.execute(
            """
            UPDATE support_ticket
            SET status = %s,
                priority = %s,
                assigned_to = %s,
                messages = %s,
                resolution = %s,
                customer_rating = %s,
                tags = %s,
                last_activity_at = %s,
                updated_at = %s
            WHERE id = %s;
            """,
            (
                ticket["status"],
                ticket["priority"],
                ticket.get("assigned_to"),
                Jsonb(ticket["messages"]),
                _json_or_null(ticket.get("resolution")),
                _json_or_null(ticket.get("customer_rating")),
                Jsonb(ticket.get("tags", [])),
                parse_iso(ticket["last_activity_at"]),
                parse_iso(ticket["updated_at"]),
                ticket["id"],
            ),
        )

    def list(
        self,
        conn: Connection,
        *,
        customer_id: str | None = None,
        assigned_to: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict], int]:
        where, params = _filters(
            customer_id=customer_id,
            assigned_to=assigned_to,
            status=status,
            priority=priority,
            category=category,
        )
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        total = int(conn.execute(f"SELECT COUNT(*) FROM support_ticket {clause};", tuple(params)).fetchone()[0])
        cur = conn.execute(
            f"""
            SELECT {COLUMNS}
            FROM support_ticket
            {clause}
            ORDER BY last_activity_at DESC
            OFFSET %s LIMIT %s;
            """,
            tuple(params) + (offset, limit),
        )
        return fetch_all(cur), total

    def count(
        self,
        conn: Connection,
        *,
        status: str | None = None,
        priority: str | None = None,
        created_since: datetime | None = None,
    ) -> int:
        where, params = _filters(status=status, priority=priority)
        if created_since is not None:
            where.append("created_at >= %s")
            params.append(created_since)
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        return int(conn.execute(f"SELECT COUNT(*) FROM support_ticket {clause};", tuple(params)).fetchone()[0])


def _filters(**kwargs) -> tuple[list[str], list]:
    where = []
    params = []
    for column, value in kwargs.items():
        if value is not None:
            where.append(f"{column} = %s")
            params.append(value)
    return where, params
