from __future__ import annotations

from psycopg import Connection
from psycopg.types.json import Jsonb

from .rows import fetch_all, fetch_one

COLUMNS = (
    "id, pincode, city, state, area, is_serviceable, pickup_charges, minimum_order_value, "
    "estimated_pickup_time, assigned_agents, latitude, longitude, created_at"
)
UPDATABLE = (
    "pincode",
    "city",
    "state",
    "area",
    "is_serviceable",
    "pickup_charges",
    "minimum_order_value",
    "estimated_pickup_time",
    "latitude",
    "longitude",
)


class PincodeRepository:
    def upsert_by_code(self, conn: Connection, *, pincode: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO pincode(id, pincode, city, state, area, is_serviceable, pickup_charges,
                                minimum_order_value, estimated_pickup_time, latitude, longitude)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (pincode) DO UPDATE SET
              city = EXCLUDED.city,
              state = EXCLUDED.state,
              area = EXCLUDED.area,
              is_serviceable = EXCLUDED.is_serviceable,
              pickup_charges = EXCLUDED.pickup_charges,
              minimum_order_value = EXCLUDED.minimum_order_value,
              estimated_pickup_time = EXCLUDED.estimated_pickup_time
            RETURNING id;
            """,
            (
                pincode["id"],
                pincode["pincode"],
                pincode["city"],
                pincode["state"],
                pincode["area"],
                pincode["is_serviceable"],
                pincode["pickup_charges"],
                pincode["minimum_order_value"],
                pincode["estimated_pickup_time"],
                pincode.get("latitude"),
                pincode.get("longitude"),
            ),
        )
        return str(cur.fetchone()[0])

    def create(self, conn: Connection, *, pincode: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO pincode(id, pincode, city, state, area, is_serviceable, pickup_charges,
                                minimum_order_value, estimated_pickup_time, assigned_agents,
                                latitude, longitude)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (
                pincode["id"],
                pincode["pincode"],
                pincode["city"],
                pincode["state"],
                pincode["area"],
                pincode["is_serviceable"],
                pincode["pickup_charges"],
                pincode["minimum_order_value"],
                pincode["estimated_pickup_time"],
                Jsonb(pincode.get("assigned_agents", [])),
                pincode.get("latitude"),
                pincode.get("longitude"),
            ),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, pincode_id: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM pincode WHERE id = %s;", (pincode_id,))
        return fetch_one(cur)

    def get_by_code(self, conn: Connection, code: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM pincode WHERE pincode = %s;", (code,))
        return fetch_one(cur)

    def list(
        self,
        conn: Connection,
        *,
        city: str | None = None,
        state: str | None = None,
        serviceable: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict], int]:
        where = []
        params: list = []
        if city:
            where.append("city ILIKE %s")
            params.append(f"%{city}%")
        if state:
            where.append("state ILIKE %s")
            params.append(f"%{state}%")
        if serviceable is not None:
            where.append("is_serviceable = %s")
            params.append(serviceable)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        total = int(conn.execute(f"SELECT COUNT(*) FROM pincode {clause};", tuple(params)).fetchone()[0])
        cur = conn.execute(
            f"""
            SELECT {COLUMNS}
            FROM pincode
            {clause}
            ORDER BY state, city, pincode
            OFFSET %s LIMIT %s;
            """,
            tuple(params) + (offset, limit),
        )
        return fetch_all(cur), total

    def update(self, conn: Connection, pincode_id: str, fields: dict) -> None:
        cols = [c for c in UPDATABLE if c in fields]
        if not cols:
            return
        assignments = ", ".join(f"{c} = %s" for c in cols)
        conn.execute(
            f"UPDATE pincode SET {assignments} WHERE id = %s;",
            tuple(fields[c] for c in cols) + (pincode_id,),
        )

    def set_agents(self, conn: Connection, *, pincode_id: str, agent_ids: list[str]) -> None:
        conn.execute(
            "UPDATE pincode SET assigned_agents = %s WHERE id = %s;",
            (Jsonb(agent_ids), pincode_id),
        )

    def delete(self, conn: Connection, pincode_id: str) -> None:
        conn.execute("DELETE FROM pincode WHERE id = %s;", (pincode_id,))
