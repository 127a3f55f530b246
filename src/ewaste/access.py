from __future__ import annotations

import uuid
from typing import Iterable, Optional

from .domain import Actor
from .errors import Forbidden, InvalidInput, Unauthorized

STAFF = ("manager", "admin")
ANY_ROLE = ("customer", "pickup_agent", "manager", "admin")


def require_role(actor: Actor, allowed: Iterable[str]) -> None:
    allowed = tuple(allowed)
    if actor.role not in allowed:
        raise Forbidden(f"User role {actor.role} is not authorized to access this route")


def require_owner(actor: Actor, owner_id: Optional[str], message: str) -> None:
    if owner_id is None or str(owner_id) != actor.id:
        raise Unauthorized(message)


def require_owner_or_roles(actor: Actor, owner_id: Optional[str], roles: Iterable[str], message: str) -> None:
    if actor.role in tuple(roles):
        return
    require_owner(actor, owner_id, message)


def parse_id(value: object, what: str = "id") -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError) as e:
        raise InvalidInput(f"Invalid {what} format") from e


def parse_text(value: object, field: str) -> Optional[str]:
    """``None`` stays ``None``; anything that is not a JSON string is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string.")
    return value


def parse_flag(value: object, field: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidInput(f"{field} must be true or false.")
    return value
