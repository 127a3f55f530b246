from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from passlib.context import CryptContext
from psycopg import Connection

from .. import notifications
from ..access import STAFF, parse_id, require_role
from ..domain import ROLES, Actor, new_id, utcnow
from ..errors import Conflict, Forbidden, InvalidInput, NotFound
from ..notifications import NotificationDispatcher
from ..pagination import Page, PageRequest
from ..repositories.order_repo import OrderRepository
from ..repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[0-9]{10}$")
PINCODE_RE = re.compile(r"^[0-9]{6}$")
MAX_NAME = 50
MIN_PASSWORD = 6
NEW_USER_WINDOW = timedelta(days=30)

MAX_CAPACITY = 8
BUSY_AT = 5
MODERATE_AT = 3


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # not a hash this context can identify
        return False


def availability_status(active_orders: int) -> str:
    if active_orders >= MAX_CAPACITY:
        return "overloaded"
    if active_orders >= BUSY_AT:
        return "busy"
    if active_orders >= MODERATE_AT:
        return "moderate"
    return "available"


def _name(data: dict, key: str) -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise InvalidInput("First and last name are required.")
    if len(value) > MAX_NAME:
        raise InvalidInput(f"Names cannot be longer than {MAX_NAME} characters.")
    return value


def _phone(data: dict) -> str:
    phone = str(data.get("phone") or "").strip()
    if not PHONE_RE.match(phone):
        raise InvalidInput("Phone number must be 10 digits")
    return phone


def _role(data: dict) -> str:
    role = data.get("role") or "customer"
    if role not in ROLES:
        raise InvalidInput(f"Unknown role: {role}")
    return role


def _address(data: dict) -> dict:
    address = data.get("address") or {}
    if not isinstance(address, dict):
        raise InvalidInput("address must be an object.")
    if not PINCODE_RE.match(str(address.get("pincode") or "")):
        raise InvalidInput("Pincode must be 6 digits")
    return {
        "street": str(address.get("street") or ""),
        "city": str(address.get("city") or ""),
        "state": str(address.get("state") or ""),
        "pincode": str(address["pincode"]),
        "landmark": str(address.get("landmark") or ""),
    }


def _password(value) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD:
        raise InvalidInput(f"Password must be at least {MIN_PASSWORD} characters.")
    return value


class UserService:
    def __init__(
        self,
        *,
        user_repo: UserRepository,
        order_repo: OrderRepository | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.user_repo = user_repo
        self.order_repo = order_repo or OrderRepository()
        self.notifier = notifier

    def create_user(self, conn: Connection, actor: Actor, data: dict) -> dict:
        require_role(actor, ("admin",))
        first_name = _name(data, "first_name")
        last_name = _name(data, "last_name")
        email = str(data.get("email") or "").strip().lower()
        if not EMAIL_RE.match(email):
            raise InvalidInput("Please provide a valid email")
        phone = _phone(data)
        password = _password(str(data.get("password") or ""))
        role = _role(data)
        address = _address(data)

        if self.user_repo.get_by_email(conn, email) is not None:
            raise Conflict("Email already registered")

        user_id = self.user_repo.create(
            conn,
            user_id=new_id(),
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            password_hash=hash_password(password),
            role=role,
            address=address,
        )
        logger.info("User %s (%s) created by %s", email, role, actor.id)
        return self.user_repo.get(conn, user_id)

    def _load(self, conn: Connection, user_id: str) -> dict:
        uid = parse_id(user_id, "user id")
        user = self.user_repo.get(conn, uid)
        if user is None:
            raise NotFound(f"User not found with id of {uid}")
        return user

    def get_user(self, conn: Connection, actor: Actor, user_id: str) -> dict:
        uid = parse_id(user_id, "user id")
        if uid != actor.id:
            require_role(actor, STAFF)
        return self._load(conn, uid)

    def list_users(
        self,
        conn: Connection,
        actor: Actor,
        *,
        page: PageRequest,
        role: str | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> Page:
        """Staff listing of accounts, newest first.

        ``status`` is ``active`` or ``inactive``; ``search`` matches names,
        email and phone case-insensitively.
        """
        require_role(actor, STAFF)
        if role in (None, "", "all"):
            role = None
        elif role not in ROLES:
            raise InvalidInput(f"Unknown role: {role}")
        if status in (None, ""):
            is_active = None
        elif status in ("active", "inactive"):
            is_active = status == "active"
        else:
            raise InvalidInput("status must be active or inactive.")

        rows, total = self.user_repo.list(
            conn,
            role=role,
            is_active=is_active,
            search=search or None,
            offset=page.offset,
            limit=page.limit,
        )
        return Page(items=rows, total=total, request=page)

    def update_user(self, conn: Connection, actor: Actor, user_id: str, data: dict) -> dict:
        require_role(actor, STAFF)
        current = self._load(conn, user_id)
        fields: dict = {}
        for key in ("first_name", "last_name"):
            if key in data:
                fields[key] = _name(data, key)
        if "phone" in data:
            fields["phone"] = _phone(data)
        if "address" in data:
            fields["address"] = _address(data)
        if "role" in data:
            if actor.role != "admin":
                raise Forbidden("Only admins can change user roles")
            if current["id"] == actor.id and data["role"] != current["role"]:
                raise InvalidInput("You cannot change your own role.")
            fields["role"] = _role(data)
        if not fields:
            raise InvalidInput("Nothing to update.")

        self.user_repo.update(conn, current["id"], fields)
        logger.info("User %s updated by %s (%s)", current["id"], actor.id, ", ".join(sorted(fields)))
        return self.user_repo.get(conn, current["id"]) or {**current, **fields}

    def delete_user(self, conn: Connection, actor: Actor, user_id: str) -> None:
        """Accounts are never removed; deleting one deactivates it."""
        self.set_active(conn, actor, user_id, is_active=False)

    def set_active(self, conn: Connection, actor: Actor, user_id: str, *, is_active: bool) -> dict:
        require_role(actor, ("admin",))
        uid = parse_id(user_id, "user id")
        if uid == actor.id and not is_active:
            raise InvalidInput("You cannot deactivate your own account.")
        user = self._load(conn, uid)
        self.user_repo.set_active(conn, user_id=uid, is_active=is_active)
        logger.info("User %s %s by %s", uid, "activated" if is_active else "deactivated", actor.id)
        return {**user, "is_active": is_active}

    def reset_password(self, conn: Connection, actor: Actor, user_id: str, *, new_password) -> dict:
        require_role(actor, ("admin",))
        password = _password(new_password)
        user = self._load(conn, user_id)
        current_hash = self.user_repo.get_password_hash(conn, user["id"])
        if current_hash and verify_password(password, current_hash):
            raise InvalidInput("New password must be different from the current password.")

        self.user_repo.set_password(conn, user_id=user["id"], password_hash=hash_password(password))
        logger.info("Password of user %s reset by %s", user["id"], actor.id)
        if self.notifier is not None:
            try:
                self.notifier.dispatch(notifications.password_reset(user))
            except Exception:
                logger.exception("Failed to dispatch password reset notification for %s", user["id"])
        return {"message": "Password reset successfully"}

    def stats(self, conn: Connection, actor: Actor, *, now: datetime | None = None) -> dict:
        require_role(actor, STAFF)
        now = now or utcnow()
        counts = self.user_repo.stats(conn, since=now - NEW_USER_WINDOW)
        return {
            "total_users": counts["customers"] + counts["pickup_agents"] + counts["managers"] + counts["admins"],
            "customers": counts["customers"],
            "pickup_agents": counts["pickup_agents"],
            "managers": counts["managers"],
            "admins": counts["admins"],
            "active_users": counts["active_users"],
            "inactive_users": counts["inactive_users"],
            "new_users_this_month": counts["new_users"],
        }

    def list_pickup_agents(
        self,
        conn: Connection,
        actor: Actor,
        *,
        pincode: str | None = None,
        city: str | None = None,
    ) -> list[dict]:
        require_role(actor, STAFF)
        return self.user_repo.list_by_role(conn, "pickup_agent", pincode=pincode or None, city=city or None)

    def pickup_agent_availability(
        self,
        conn: Connection,
        actor: Actor,
        *,
        pincode: str | None = None,
        city: str | None = None,
        now: datetime | None = None,
    ) -> dict:
        """Active pickup agents with their current workload, least loaded first."""
        now = now or utcnow()
        week_start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
        agents = []
        for agent in self.list_pickup_agents(conn, actor, pincode=pincode, city=city):
            load = self.order_repo.workload(conn, agent["id"], today=now.date(), week_start=week_start)
            status = availability_status(load["active_orders"])
            agents.append(
                {
                    **agent,
                    "workload": {
                        "active_orders": load["active_orders"],
                        "today_orders": load["today_orders"],
                        "week_completed_orders": load["week_completed"],
                        "max_capacity": MAX_CAPACITY,
                        "availability_status": status,
                        "can_take_new_order": load["active_orders"] < MAX_CAPACITY,
                    },
                }
            )
        agents.sort(
            key=lambda a: (a["workload"]["availability_status"] != "available", a["workload"]["active_orders"])
        )
        statuses = [a["workload"]["availability_status"] for a in agents]
        return {
            "data": agents,
            "summary": {
                "available": statuses.count("available"),
                "busy": statuses.count("busy"),
                "overloaded": statuses.count("overloaded"),
                "can_take_orders": sum(1 for a in agents if a["workload"]["can_take_new_order"]),
            },
        }
