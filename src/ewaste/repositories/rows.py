from __future__ import annotations

import uuid
from datetime import date, datetime

from psycopg import Cursor


def _plain(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_to_dict(cur: Cursor, row) -> dict:
    cols = [d.name for d in cur.description]
    return {c: _plain(v) for c, v in zip(cols, row)}


def fetch_one(cur: Cursor) -> dict | None:
    row = cur.fetchone()
    if not row:
        return None
    return row_to_dict(cur, row)


def fetch_all(cur: Cursor) -> list[dict]:
    return [row_to_dict(cur, row) for row in cur.fetchall()]
