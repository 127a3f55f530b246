from __future__ import annotations

import logging
import re

from psycopg import Connection

from ..access import STAFF, parse_flag, parse_id, require_role
from ..domain import Actor, new_id
from ..errors import Conflict, InvalidInput, NotFound
from ..pagination import Page, PageRequest
from ..repositories.pincode_repo import PincodeRepository
from ..repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

PINCODE_RE = re.compile(r"^[0-9]{6}$")
DEFAULT_MINIMUM_ORDER_VALUE = 100.0
DEFAULT_PICKUP_TIME = "24-48 hours"
NOT_SERVICEABLE_MESSAGE = "Service not available in this area"


def _number(data: dict, key: str, default: float | None) -> float | None:
    value = data.get(key, default)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{key} must be a number.") from e


def normalize_pincode(data: dict, *, partial: bool = False) -> dict:
    out: dict = {}
    if "pincode" in data or not partial:
        code = str(data.get("pincode") or "").strip()
        if not PINCODE_RE.match(code):
            raise InvalidInput("Pincode must be 6 digits")
        out["pincode"] = code
    for key in ("city", "state", "area"):
        if key in data or not partial:
            value = str(data.get(key) or "").strip()
            if not value:
                raise InvalidInput(f"{key} is required.")
            out[key] = value
    if "is_serviceable" in data or not partial:
        out["is_serviceable"] = parse_flag(data.get("is_serviceable", True), "is_serviceable")
    if "pickup_charges" in data or not partial:
        out["pickup_charges"] = _number(data, "pickup_charges", 0.0)
    if "minimum_order_value" in data or not partial:
        out["minimum_order_value"] = _number(data, "minimum_order_value", DEFAULT_MINIMUM_ORDER_VALUE)
    for key in ("pickup_charges", "minimum_order_value"):
        if out.get(key) is not None and out[key] < 0:
            raise InvalidInput(f"{key} cannot be negative.")
    if "estimated_pickup_time" in data or not partial:
        out["estimated_pickup_time"] = str(data.get("estimated_pickup_time") or DEFAULT_PICKUP_TIME)
    for key in ("latitude", "longitude"):
        if key in data or not partial:
            out[key] = _number(data, key, None)
    return out


class PincodeService:
    def __init__(self, *, pincode_repo: PincodeRepository, user_repo: UserRepository) -> None:
        self.pincode_repo = pincode_repo
        self.user_repo = user_repo

    def check(self, conn: Connection, code: str) -> dict:
        """Serviceability lookup for the public pincode checker."""
        if not PINCODE_RE.match(code or ""):
            raise InvalidInput("Invalid pincode format")
        row = self.pincode_repo.get_by_code(conn, code)
        if row is None:
            return {"serviceable": False, "message": NOT_SERVICEABLE_MESSAGE}
        return {
            "serviceable": bool(row["is_serviceable"]),
            "data": {
                "pincode": row["pincode"],
                "city": row["city"],
                "state": row["state"],
                "area": row["area"],
                "pickup_charges": row["pickup_charges"],
                "minimum_order_value": row["minimum_order_value"],
                "estimated_pickup_time": row["estimated_pickup_time"],
                "available_pickup_agents": len(row.get("assigned_agents") or []),
            },
        }

    def list_pincodes(
        self,
        conn: Connection,
        actor: Actor,
        *,
        page: PageRequest,
        city: str | None = None,
        state: str | None = None,
        serviceable: bool | None = None,
    ) -> Page:
        require_role(actor, STAFF)
        rows, total = self.pincode_repo.list(
            conn,
            city=city or None,
            state=state or None,
            serviceable=serviceable,
            offset=page.offset,
            limit=page.limit,
        )
        return Page(items=rows, total=total, request=page)

    def _load(self, conn: Connection, pincode_id: str) -> dict:
        pid = parse_id(pincode_id, "pincode id")
        row = self.pincode_repo.get(conn, pid)
        if row is None:
            raise NotFound(f"Pincode not found with id of {pid}")
        return row

    def create_pincode(self, conn: Connection, actor: Actor, data: dict) -> dict:
        require_role(actor, ("admin",))
        pincode = normalize_pincode(data)
        if self.pincode_repo.get_by_code(conn, pincode["pincode"]) is not None:
            raise Conflict("Pincode already exists")
        pincode["id"] = new_id()
        pincode["assigned_agents"] = []
        self.pincode_repo.create(conn, pincode=pincode)
        logger.info("Pincode %s added by %s", pincode["pincode"], actor.id)
        return self.pincode_repo.get(conn, pincode["id"]) or pincode

    def update_pincode(self, conn: Connection, actor: Actor, pincode_id: str, data: dict) -> dict:
        require_role(actor, ("admin",))
        current = self._load(conn, pincode_id)
        fields = normalize_pincode(data, partial=True)
        if "pincode" in fields and fields["pincode"] != current["pincode"]:
            if self.pincode_repo.get_by_code(conn, fields["pincode"]) is not None:
                raise Conflict("Pincode already exists")
        self.pincode_repo.update(conn, current["id"], fields)
        return self.pincode_repo.get(conn, current["id"]) or {**current, **fields}

    def delete_pincode(self, conn: Connection, actor: Actor, pincode_id: str) -> None:
        require_role(actor, ("admin",))
        current = self._load(conn, pincode_id)
        self.pincode_repo.delete(conn, current["id"])
        logger.info("Pincode %s removed by %s", current["pincode"], actor.id)

    def assign_agent(self, conn: Connection, actor: Actor, pincode_id: str, *, agent_id: str) -> dict:
        require_role(actor, STAFF)
        current = self._load(conn, pincode_id)
        aid = parse_id(agent_id, "pickup agent id")
        agent = self.user_repo.get(conn, aid)
        if agent is None or agent["role"] != "pickup_agent":
            raise NotFound("Pickup agent not found")
        agents = list(current.get("assigned_agents") or [])
        if aid in agents:
            raise Conflict("Pickup agent already assigned to this pincode")
        agents.append(aid)
        self.pincode_repo.set_agents(conn, pincode_id=current["id"], agent_ids=agents)
        return {**current, "assigned_agents": agents}

    def remove_agent(self, conn: Connection, actor: Actor, pincode_id: str, *, agent_id: str) -> dict:
        require_role(actor, STAFF)
        current = self._load(conn, pincode_id)
        aid = parse_id(agent_id, "pickup agent id")
        agents = [a for a in (current.get("assigned_agents") or []) if a != aid]
        self.pincode_repo.set_agents(conn, pincode_id=current["id"], agent_ids=agents)
        return {**current, "assigned_agents": agents}
