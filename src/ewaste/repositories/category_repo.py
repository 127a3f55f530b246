from __future__ import annotations

from psycopg import Connection
from psycopg.types.json import Jsonb

from .rows import fetch_all, fetch_one

COLUMNS = (
    "id, name, description, icon, base_price, unit, condition_multipliers, "
    "subcategories, is_active, sort_order, created_at"
)
UPDATABLE = (
    "name",
    "description",
    "icon",
    "base_price",
    "unit",
    "condition_multipliers",
    "subcategories",
    "is_active",
    "sort_order",
)
JSON_FIELDS = {"condition_multipliers", "subcategories"}


def _param(column: str, value):
    return Jsonb(value) if column in JSON_FIELDS else value


class CategoryRepository:
    def create(self, conn: Connection, *, category: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO category(id, name, description, icon, base_price, unit,
                                 condition_multipliers, subcategories, is_active, sort_order)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (
                category["id"],
                category["name"],
                category["description"],
                category["icon"],
                category["base_price"],
                category["unit"],
                Jsonb(category["condition_multipliers"]),
                Jsonb(category["subcategories"]),
                category["is_active"],
                category["sort_order"],
            ),
        )
        return str(cur.fetchone()[0])

    def upsert_by_name(self, conn: Connection, *, category: dict) -> str:
        cur = conn.execute(
            """
            INSERT INTO category(id, name, description, icon, base_price, unit,
                                 condition_multipliers, subcategories, is_active, sort_order)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (name) DO UPDATE SET
              description = EXCLUDED.description,
              icon = EXCLUDED.icon,
              base_price = EXCLUDED.base_price,
              unit = EXCLUDED.unit,
              condition_multipliers = EXCLUDED.condition_multipliers,
              subcategories = EXCLUDED.subcategories,
              is_active = EXCLUDED.is_active,
              sort_order = EXCLUDED.sort_order
            RETURNING id;
            """,
            (
                category["id"],
                category["name"],
                category["description"],
                category["icon"],
                category["base_price"],
                category["unit"],
                Jsonb(category["condition_multipliers"]),
                Jsonb(category["subcategories"]),
                category["is_active"],
                category["sort_order"],
            ),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, category_id: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM category WHERE id = %s;", (category_id,))
        return fetch_one(cur)

    def get_by_name(self, conn: Connection, name: str) -> dict | None:
        cur = conn.execute(f"SELECT {COLUMNS} FROM category WHERE name = %s;", (name,))
        return fetch_one(cur)

    def list(self, conn: Connection, *, active_only: bool = True) -> list[dict]:
        where = "WHERE is_active" if active_only else ""
        cur = conn.execute(f"SELECT {COLUMNS} FROM category {where} ORDER BY sort_order, name;")
        return fetch_all(cur)

    def update(self, conn: Connection, category_id: str, fields: dict) -> None:
        cols = [c for c in UPDATABLE if c in fields]
        if not cols:
            return
        assignments = ", ".join(f"{c} = %s" for c in cols)
        conn.execute(
            f"UPDATE category SET {assignments} WHERE id = %s;",
            tuple(_param(c, fields[c]) for c in cols) + (category_id,),
        )

    def delete(self, conn: Connection, category_id: str) -> None:
        conn.execute("DELETE FROM category WHERE id = %s;", (category_id,))
