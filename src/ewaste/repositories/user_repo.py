from __future__ import annotations

from datetime import datetime

from psycopg import Connection
from psycopg.types.json import Jsonb

from .rows import fetch_all, fetch_one

# password_hash and reset token columns never leave the repository
PUBLIC_COLUMNS = "id, first_name, last_name, email, phone, role, address, is_active, last_login, created_at"
UPDATABLE = ("first_name", "last_name", "phone", "role", "address")


class UserRepository:
    def create(
        self,
        conn: Connection,
        *,
        user_id: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
        password_hash: str,
        role: str,
        address: dict,
    ) -> str:
        cur = conn.execute(
            """
            INSERT INTO app_user(id, first_name, last_name, email, phone, password_hash, role, address)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (user_id, first_name, last_name, email, phone, password_hash, role, Jsonb(address)),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, user_id: str) -> dict | None:
        cur = conn.execute(f"SELECT {PUBLIC_COLUMNS} FROM app_user WHERE id = %s;", (user_id,))
        return fetch_one(cur)

    def get_by_email(self, conn: Connection, email: str) -> dict | None:
        cur = conn.execute(f"SELECT {PUBLIC_COLUMNS} FROM app_user WHERE email = %s;", (email,))
        return fetch_one(cur)

    def list_by_role(
        self,
        conn: Connection,
        role: str,
        *,
        active_only: bool = True,
        pincode: str | None = None,
        city: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        where = ["role = %s"]
        params: list = [role]
        if active_only:
            where.append("is_active")
        if pincode:
            where.append("address->>'pincode' = %s")
            params.append(pincode)
        if city:
            where.append("address->>'city' ILIKE %s")
            params.append(f"%{city}%")
        params.append(limit)
        cur = conn.execute(
            f"""
            SELECT {PUBLIC_COLUMNS}
            FROM app_user
            WHERE {' AND '.join(where)}
            ORDER BY first_name, last_name
            LIMIT %s;
            """,
            tuple(params),
        )
        return fetch_all(cur)

    def set_active(self, conn: Connection, *, user_id: str, is_active: bool) -> None:
        conn.execute("UPDATE app_user SET is_active = %s WHERE id = %s;", (is_active, user_id))

    def get_password_hash(self, conn: Connection, user_id: str) -> str | None:
        row = conn.execute("SELECT password_hash FROM app_user WHERE id = %s;", (user_id,)).fetchone()
        return row[0] if row else None

    def set_password(self, conn: Connection, *, user_id: str, password_hash: str) -> None:
        conn.execute("UPDATE app_user SET password_hash = %s WHERE id = %s;", (password_hash, user_id))

    def list(
        self,
        conn: Connection,
        *,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[dict], int]:
        where = []
        params: list = []
        if role:
            where.append("role = %s")
            params.append(role)
        if is_active is not None:
            where.append("is_active = %s")
            params.append(is_active)
        if search:
            where.append("(first_name ILIKE %s OR last_name ILIKE %s OR email ILIKE %s OR phone ILIKE %s)")
            params.extend([f"%{search}%"] * 4)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        total = int(conn.execute(f"SELECT COUNT(*) FROM app_user {clause};", tuple(params)).fetchone()[0])
        cur = conn.execute(
            f"""
            SELECT {PUBLIC_COLUMNS}
            FROM app_user
            {clause}
            ORDER BY created_at DESC
            OFFSET %s LIMIT %s;
            """,
            tuple(params) + (offset, limit),
        )
        return fetch_all(cur), total

    def update(self, conn: Connection, user_id: str, fields: dict) -> None:
        cols = [c for c in UPDATABLE if c in fields]
        if not cols:
            return
        assignments = ", ".join(f"{c} = %s" for c in cols)
        conn.execute(
            f"UPDATE app_user SET {assignments} WHERE id = %s;",
            tuple(Jsonb(fields[c]) if c == "address" else fields[c] for c in cols) + (user_id,),
        )

    def stats(self, conn: Connection, *, since: datetime) -> dict:
        cur = conn.execute(
            """
            SELECT
              COUNT(*) FILTER (WHERE role = 'customer') AS customers,
              COUNT(*) FILTER (WHERE role = 'pickup_agent') AS pickup_agents,
              COUNT(*) FILTER (WHERE role = 'manager') AS managers,
              COUNT(*) FILTER (WHERE role = 'admin') AS admins,
              COUNT(*) FILTER (WHERE is_active) AS active_users,
              COUNT(*) FILTER (WHERE NOT is_active) AS inactive_users,
              COUNT(*) FILTER (WHERE created_at >= %s) AS new_users
            FROM app_user;
            """,
            (since,),
        )
        return {k: int(v) for k, v in fetch_one(cur).items()}
