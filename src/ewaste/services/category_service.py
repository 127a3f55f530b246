from __future__ import annotations

import logging

from psycopg import Connection

from ..access import parse_flag, parse_id, require_role
from ..domain import UNITS, Actor, new_id
from ..errors import Conflict, InvalidInput, NotFound
from ..pricing import complete_condition_multipliers
from ..repositories.category_repo import CategoryRepository

logger = logging.getLogger(__name__)


def normalize_category(data: dict, *, partial: bool = False) -> dict:
    """Validate category fields; with ``partial`` only the given keys are checked."""
    out: dict = {}

    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            raise InvalidInput("Category name is required.")
        out["name"] = name
    for key in ("description", "icon"):
        if key in data or not partial:
            out[key] = str(data.get(key) or "").strip()
    if "base_price" in data or not partial:
        try:
            base_price = float(data["base_price"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput("base_price must be a number.") from e
        if base_price < 0:
            raise InvalidInput("base_price cannot be negative.")
        out["base_price"] = base_price
    if "unit" in data or not partial:
        unit = data.get("unit") or "piece"
        if unit not in UNITS:
            raise InvalidInput(f"Unknown unit: {unit}")
        out["unit"] = unit
    if "condition_multipliers" in data or not partial:
        try:
            multipliers = complete_condition_multipliers(data.get("condition_multipliers"))
        except (TypeError, ValueError) as e:
            raise InvalidInput(str(e)) from e
        if any(v < 0 for v in multipliers.values()):
            raise InvalidInput("Condition multipliers cannot be negative.")
        out["condition_multipliers"] = multipliers
    if "subcategories" in data or not partial:
        subs = []
        for sub in data.get("subcategories") or []:
            try:
                name = str(sub["name"]).strip()
                modifier = float(sub.get("price_modifier", 1.0))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise InvalidInput("Subcategories need a name and a numeric price_modifier.") from e
            if not name or modifier <= 0:
                raise InvalidInput("Subcategory price_modifier must be positive.")
            subs.append({"name": name, "price_modifier": modifier})
        out["subcategories"] = subs
    if "is_active" in data or not partial:
        out["is_active"] = parse_flag(data.get("is_active", True), "is_active")
    if "sort_order" in data or not partial:
        try:
            out["sort_order"] = int(data.get("sort_order", 0))
        except (TypeError, ValueError) as e:
            raise InvalidInput("sort_order must be an integer.") from e
    return out


class CategoryService:
    def __init__(self, *, category_repo: CategoryRepository) -> None:
        self.category_repo = category_repo

    def list_categories(self, conn: Connection, *, include_inactive: bool = False) -> list[dict]:
        return self.category_repo.list(conn, active_only=not include_inactive)

    def get_category(self, conn: Connection, category_id: str) -> dict:
        cid = parse_id(category_id, "category id")
        row = self.category_repo.get(conn, cid)
        if row is None:
            raise NotFound(f"Category not found with id of {cid}")
        return row

    def create_category(self, conn: Connection, actor: Actor, data: dict) -> dict:
        require_role(actor, ("admin",))
        category = normalize_category(data)
        if self.category_repo.get_by_name(conn, category["name"]) is not None:
            raise Conflict(f"Category {category['name']} already exists")
        category["id"] = new_id()
        self.category_repo.create(conn, category=category)
        logger.info("Category %s created by %s", category["name"], actor.id)
        return self.category_repo.get(conn, category["id"]) or category

    def update_category(self, conn: Connection, actor: Actor, category_id: str, data: dict) -> dict:
        require_role(actor, ("admin",))
        current = self.get_category(conn, category_id)
        fields = normalize_category(data, partial=True)
        if "name" in fields and fields["name"] != current["name"]:
            if self.category_repo.get_by_name(conn, fields["name"]) is not None:
                raise Conflict(f"Category {fields['name']} already exists")
        self.category_repo.update(conn, current["id"], fields)
        return self.category_repo.get(conn, current["id"]) or {**current, **fields}

    def delete_category(self, conn: Connection, actor: Actor, category_id: str) -> None:
        require_role(actor, ("admin",))
        current = self.get_category(conn, category_id)
        self.category_repo.delete(conn, current["id"])
        logger.info("Category %s deleted by %s", current["name"], actor.id)
