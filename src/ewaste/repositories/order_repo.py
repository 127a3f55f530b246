from __future__ import annotations

from datetime import date, datetime

from psycopg import Connection
from psycopg.types.json import Jsonb

from ..domain import ACTIVE_AGENT_STATUSES, parse_iso
from .rows import fetch_all, fetch_one

COLUMNS = (
    "id, order_number, customer_id, status, assigned_agent_id, items, pickup_details, "
    "pin_verification, pricing, payment, timeline, created_at, updated_at"
)


class OrderRepository:
    def next_number(self, conn: Connection) -> int:
        return int(conn.execute("SELECT nextval('order_number_seq');").fetchone()[0])

    def create(self, conn: Connection, *, order: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO pickup_order(id, order_number, customer_id, status, assigned_agent_id,
                                     items, pickup_details, pin_verification, pricing, payment,
                                     timeline, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (
                order["id"],
                order["order_number"],
                order["customer_id"],
                order["status"],
                order.get("assigned_agent_id"),
                Jsonb(order["items"]),
                Jsonb(order["pickup_details"]),
                Jsonb(order["pin_verification"]),
                Jsonb(order["pricing"]),
                Jsonb(order["payment"]),
                Jsonb(order["timeline"]),
                parse_iso(order["created_at"]),
                parse_iso(order["updated_at"]),
            ),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, order_id: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM pickup_order WHERE id = %s;", (order_id,))
        return fetch_one(cur)

    def save(self, conn: Connection, *, order: dict) -> None:
        """Write back the mutable parts of one order document."""
        conn.execute(
            """
            UPDATE pickup_order
            SET status = %s,
                assigned_agent_id = %s,
                items = %s,
                pin_verification = %s,
                pricing = %s,
                payment = %s,
                timeline = %s,
                updated_at = %s
            WHERE id = %s;
            """,
            (
                order["status"],
                order.get("assigned_agent_id"),
                Jsonb(order["items"]),
                Jsonb(order["pin_verification"]),
                Jsonb(order["pricing"]),
                Jsonb(order["payment"]),
                Jsonb(order["timeline"]),
                parse_iso(order["updated_at"]),
                order["id"],
            ),
        )

    def list(
        self,
        conn: Connection,
        *,
        customer_id: str | None = None,
        agent_id: str | None = None,
        statuses: list[str] | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict], int]:
        where = []
        params: list = []
        if customer_id:
            where.append("customer_id = %s")
            params.append(customer_id)
        if agent_id:
            where.append("assigned_agent_id = %s")
            params.append(agent_id)
        if statuses:
            where.append("status = ANY(%s)")
            params.append(list(statuses))
        if search:
            where.append("order_number ILIKE %s")
            params.append(f"%{search}%")
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        total = int(conn.execute(f"SELECT COUNT(*) FROM pickup_order {clause};", tuple(params)).fetchone()[0])
        cur = conn.execute(
            f"""
            SELECT {COLUMNS}
            FROM pickup_order
            {clause}
            ORDER BY created_at DESC
            OFFSET %s LIMIT %s;
            """,
            tuple(params) + (offset, limit),
        )
        return fetch_all(cur), total

    def workload(self, conn: Connection, agent_id: str, *, today: date, week_start: datetime) -> dict:
        """Active orders, orders preferred for ``today`` and completions since ``week_start``."""
        cur = conn.execute(
            """
            SELECT
              COUNT(*) FILTER (WHERE status = ANY(%s)) AS active_orders,
              COUNT(*) FILTER (WHERE pickup_details->>'preferred_date' = %s) AS today_orders,
              COUNT(*) FILTER (WHERE status = 'completed' AND updated_at >= %s) AS week_completed
            FROM pickup_order
            WHERE assigned_agent_id = %s;
            """,
            (list(ACTIVE_AGENT_STATUSES), today.isoformat(), week_start, agent_id),
        )
        return {k: int(v) for k, v in fetch_one(cur).items()}
