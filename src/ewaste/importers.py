from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

from psycopg import Connection

from .domain import new_id
from .errors import InvalidInput
from .repositories.category_repo import CategoryRepository
from .repositories.pincode_repo import PincodeRepository
from .services.category_service import normalize_category
from .services.pincode_service import normalize_pincode

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "y"}


class ImportError(Exception):
    pass


def import_pincodes_csv(conn: Connection, path: str | Path, pincode_repo: PincodeRepository) -> int:
    p = Path(path)
    if not p.exists():
        raise ImportError(f"File not found: {p}")

    count = 0
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        required = {"pincode", "city", "state", "area", "pickup_charges"}
        if not required.issubset(set(reader.fieldnames or [])):
            raise ImportError(f"CSV must contain columns: {sorted(required)}")

        for line_no, row in enumerate(reader, start=2):
            data = {k: (v or "").strip() for k, v in row.items() if k}
            if "is_serviceable" in data:
                data["is_serviceable"] = data["is_serviceable"].lower() in TRUTHY if data["is_serviceable"] else True
            for key in ("minimum_order_value", "estimated_pickup_time", "latitude", "longitude"):
                if key in data and data[key] == "":
                    del data[key]
            try:
                pincode = normalize_pincode(data)
            except InvalidInput as e:
                logger.warning("Skipping pincode row %s: %s", line_no, e)
                continue
            pincode["id"] = new_id()
            pincode_repo.upsert_by_code(conn, pincode=pincode)
            count += 1
    return count


def import_categories_json(conn: Connection, path: str | Path, category_repo: CategoryRepository) -> int:
    p = Path(path)
    if not p.exists():
        raise ImportError(f"File not found: {p}")

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ImportError(f"Invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise ImportError("JSON must be a list of objects")

    count = 0
    for obj in data:
        if not isinstance(obj, dict):
            continue
        try:
            category = normalize_category(obj)
        except InvalidInput as e:
            logger.warning("Skipping category %r: %s", obj.get("name"), e)
            continue
        category["id"] = new_id()
        category_repo.upsert_by_name(conn, category=category)
        count += 1
    return count
