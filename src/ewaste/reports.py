from __future__ import annotations

from datetime import datetime, timedelta

from psycopg import Connection

from .domain import ORDER_STATUSES

BUSY_THRESHOLD = 5


def order_summary(conn: Connection, date_from: datetime, date_to: datetime) -> dict:
    cur = conn.execute(
        """
        SELECT
          COUNT(*) AS orders_count,
          COALESCE(SUM((pricing->>'estimated_total')::numeric), 0) AS estimated_sum,
          COALESCE(SUM((pricing->>'pickup_charges')::numeric), 0) AS pickup_charges_sum,
          COALESCE(SUM((pricing->>'actual_total')::numeric), 0) AS actual_sum
        FROM pickup_order
        WHERE created_at >= %s AND created_at < %s;
        """,
        (date_from, date_to),
    )
    row = cur.fetchone()
    cols = [d.name for d in cur.description]
    summary = {c: (float(v) if c != "orders_count" else int(v)) for c, v in zip(cols, row)}

    cur = conn.execute(
        """
        SELECT status, COUNT(*) AS n
        FROM pickup_order
        WHERE created_at >= %s AND created_at < %s
        GROUP BY status;
        """,
        (date_from, date_to),
    )
    by_status = {s: 0 for s in ORDER_STATUSES}
    for status, n in cur.fetchall():
        by_status[status] = int(n)
    summary["by_status"] = by_status
    summary["date_from"] = date_from.isoformat()
    summary["date_to"] = date_to.isoformat()
    return summary


def agent_performance(conn: Connection, agent_id: str, now: datetime) -> dict:
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_week = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    cur = conn.execute(
        """
        SELECT
          COUNT(*) AS total_assigned,
          COUNT(*) FILTER (WHERE status = 'completed') AS total_completed,
          COUNT(*) FILTER (WHERE status = 'completed' AND updated_at >= %s) AS monthly_completed,
          COUNT(*) FILTER (WHERE status = 'completed' AND updated_at >= %s) AS weekly_completed,
          COUNT(*) FILTER (WHERE status IN ('assigned', 'in_transit', 'picked_up')) AS active_orders
        FROM pickup_order
        WHERE assigned_agent_id = %s;
        """,
        (start_of_month, start_of_week, agent_id),
    )
    row = cur.fetchone()
    cols = [d.name for d in cur.description]
    perf = {c: int(v) for c, v in zip(cols, row)}
    total = perf["total_assigned"]
    perf["completion_rate"] = round(perf["total_completed"] / total * 100, 2) if total else 0.0
    perf["availability"] = "busy" if perf["active_orders"] > BUSY_THRESHOLD else "available"
    return perf
