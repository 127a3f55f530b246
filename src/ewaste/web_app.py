from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Iterator

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from flask_cors import CORS
from jose import JWTError, jwt
from psycopg import Connection
from werkzeug.exceptions import HTTPException

from .access import STAFF, parse_flag, parse_id, require_role
from .config import AppConfig
from .db import Db, DbError
from .domain import Actor, parse_iso, utcnow
from .errors import AppError, InvalidInput, NotFound, Unauthorized
from .notifications import NotificationDispatcher
from .pagination import PageRequest, parse_page_request
from .reports import agent_performance, order_summary
from .services.order_service import AddressInput, OrderItemInput, PickupDetailsInput, visible_order
from .wiring import Repositories, Services, build_services

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


@dataclass
class AppState:
    cfg: AppConfig
    db: Db
    services: Services
    notifier: NotificationDispatcher | None = None


def create_app(
    cfg: AppConfig,
    db: Db,
    *,
    repos: Repositories | None = None,
    notifier: NotificationDispatcher | None = None,
) -> Flask:
    app = Flask(__name__)
    CORS(app, origins=list(cfg.cors_origins) or "*", supports_credentials=True)

    services = build_services(repos, notifier=notifier, frontend_url=cfg.business.frontend_url)
    app.extensions["ewaste"] = AppState(cfg=cfg, db=db, services=services, notifier=notifier)

    app.register_blueprint(api)
    app.register_error_handler(AppError, _handle_app_error)
    app.register_error_handler(HTTPException, _handle_http_error)
    app.register_error_handler(Exception, _handle_unexpected)
    return app


def _state() -> AppState:
    return current_app.extensions["ewaste"]


@contextmanager
def _write() -> Iterator[Connection]:
    """Transaction for one mutation; its notifications go out only after the commit."""
    state = _state()
    if state.notifier is None:
        with state.db.transaction() as conn:
            yield conn
        return
    with state.notifier.deferred() as outbox:
        with state.db.transaction(after_commit=outbox.release) as conn:
            yield conn


# -- errors -----------------------------------------------------------------


def _handle_app_error(e: AppError):
    return jsonify({"success": False, "message": e.message}), e.status_code


def _handle_http_error(e: HTTPException):
    return jsonify({"success": False, "message": e.description}), e.code


def _handle_unexpected(e: Exception):
    if isinstance(e, DbError):
        logger.error("Database unavailable: %s", e)
    else:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"success": False, "message": "Server error"}), 500


# -- auth -------------------------------------------------------------------


def _token_from_request() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip() or None
    return request.cookies.get(_state().cfg.auth.cookie_name) or None


def _authenticate() -> Actor:
    state = _state()
    token = _token_from_request()
    if not token:
        raise Unauthorized("Not authorized to access this route")
    try:
        claims = jwt.decode(token, state.cfg.auth.jwt_secret, algorithms=[state.cfg.auth.jwt_algorithm])
    except JWTError as e:
        raise Unauthorized("Not authorized to access this route") from e

    try:
        user_id = parse_id(claims.get("sub"), "user id")
    except InvalidInput as e:
        raise Unauthorized("Not authorized to access this route") from e

    with state.db.session() as conn:
        user = state.services.repos.users.get(conn, user_id)
    if user is None or not user.get("is_active", True):
        raise Unauthorized("Not authorized to access this route")
    return Actor(id=user["id"], role=user["role"])


def auth_required(*roles: str):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            g.actor = _authenticate()
            if roles:
                require_role(g.actor, roles)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


# -- request helpers --------------------------------------------------------


def _body() -> dict:
    if not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _page() -> PageRequest:
    business = _state().cfg.business
    return parse_page_request(
        request.args.get("page"),
        request.args.get("limit"),
        default_limit=business.default_page_size,
        max_limit=business.max_page_size,
    )


def _ok(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _string_list(value, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidInput(f"{field} must be a list of strings.")
    return tuple(value)


def _order_items(raw) -> list[OrderItemInput]:
    if not isinstance(raw, list):
        raise InvalidInput("items must be a list.")
    items = []
    for obj in raw:
        if not isinstance(obj, dict):
            raise InvalidInput("Each item must be an object.")
        items.append(
            OrderItemInput(
                category_id=obj.get("category_id") or obj.get("category") or "",
                condition=str(obj.get("condition") or ""),
                quantity=obj.get("quantity", 1),
                subcategory=str(obj.get("subcategory") or ""),
                brand=str(obj.get("brand") or ""),
                model=str(obj.get("model") or ""),
                description=str(obj.get("description") or ""),
                images=_string_list(obj.get("images"), "images"),
            )
        )
    return items


def _pickup_details(raw) -> PickupDetailsInput:
    if not isinstance(raw, dict):
        raise InvalidInput("pickup_details must be an object.")
    address = raw.get("address") or {}
    if not isinstance(address, dict):
        raise InvalidInput("pickup_details.address must be an object.")
    return PickupDetailsInput(
        address=AddressInput(
            street=str(address.get("street") or ""),
            city=str(address.get("city") or ""),
            state=str(address.get("state") or ""),
            pincode=str(address.get("pincode") or ""),
            landmark=str(address.get("landmark") or ""),
        ),
        preferred_date=str(raw.get("preferred_date") or ""),
        time_slot=str(raw.get("time_slot") or ""),
        contact_number=str(raw.get("contact_number") or ""),
        special_instructions=str(raw.get("special_instructions") or ""),
    )


def _optional_number(value, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number.")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{field} must be a number.") from e


def _order_page_response(page):
    actor = g.actor
    body = page.as_response()
    body["data"] = [visible_order(o, actor) for o in body["data"]]
    return jsonify(body)


# -- health -----------------------------------------------------------------


@api.get("/health")
def health():
    return jsonify({"success": True, "status": "ok", "timestamp": utcnow().isoformat()})


# -- orders -----------------------------------------------------------------


@api.post("/orders")
@auth_required("customer")
def create_order():
    state = _state()
    data = _body()
    pricing = data.get("pricing") or {}
    charges = data.get("pickup_charges", pricing.get("pickup_charges") if isinstance(pricing, dict) else None)
    payment = data.get("payment") or {}
    method = data.get("payment_method") or (payment.get("method") if isinstance(payment, dict) else None)
    with _write() as conn:
        order = state.services.orders.create_order(
            conn,
            g.actor,
            items=_order_items(data.get("items") or []),
            pickup=_pickup_details(data.get("pickup_details")),
            pickup_charges=_optional_number(charges, "pickup_charges"),
            payment_method=method,
        )
    return _ok(order, 201)


@api.get("/orders")
@auth_required("customer")
def list_my_orders():
    state = _state()
    with state.db.session() as conn:
        page = state.services.orders.list_orders(conn, g.actor, page=_page(), status=request.args.get("status"))
    return _order_page_response(page)


@api.get("/orders/all")
@auth_required(*STAFF)
def list_all_orders():
    state = _state()
    with state.db.session() as conn:
        page = state.services.orders.list_orders(
            conn,
            g.actor,
            page=_page(),
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
    return _order_page_response(page)


@api.get("/orders/assigned")
@auth_required("pickup_agent")
def list_assigned_orders():
    state = _state()
    with state.db.session() as conn:
        page = state.services.orders.list_orders(conn, g.actor, page=_page(), status=request.args.get("status"))
    return _order_page_response(page)


@api.get("/orders/<order_id>")
@auth_required()
def get_order(order_id: str):
    state = _state()
    with state.db.session() as conn:
        order = state.services.orders.get_order(conn, g.actor, order_id)
    return _ok(visible_order(order, g.actor))


@api.put("/orders/<order_id>/cancel")
@auth_required("customer", "admin")
def cancel_order(order_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        order = state.services.orders.cancel_order(conn, g.actor, order_id, reason=data.get("reason"))
    return _ok(order)


@api.put("/orders/<order_id>/status")
@auth_required("admin", "manager", "pickup_agent")
def update_order_status(order_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        order = state.services.orders.update_status(
            conn,
            g.actor,
            order_id,
            status=str(data.get("status") or ""),
            note=data.get("note"),
            actual_total=_optional_number(data.get("actual_total"), "actual_total"),
        )
    return _ok(visible_order(order, g.actor))


@api.put("/orders/<order_id>/assign")
@auth_required("admin", "manager")
def assign_order(order_id: str):
    state = _state()
    data = _body()
    agent_id = data.get("pickup_agent_id") or data.get("pickupBoyId")
    if not agent_id:
        raise InvalidInput("pickup_agent_id is required.")
    with _write() as conn:
        order = state.services.orders.assign_agent(conn, g.actor, order_id, agent_id=agent_id)
    return _ok(order)


@api.put("/orders/<order_id>/verify")
@auth_required("pickup_agent")
def verify_order_pin(order_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        order = state.services.orders.verify_pin(conn, g.actor, order_id, pin=str(data.get("pin") or ""))
    return _ok(visible_order(order, g.actor))


@api.get("/orders/<order_id>/receipt")
@auth_required()
def order_receipt(order_id: str):
    state = _state()
    with state.db.session() as conn:
        filename, pdf = state.services.orders.receipt(conn, g.actor, order_id)
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -- support tickets --------------------------------------------------------


@api.post("/support")
@auth_required("customer")
def create_ticket():
    state = _state()
    data = _body()
    with _write() as conn:
        ticket = state.services.tickets.create_ticket(
            conn,
            g.actor,
            subject=data.get("subject"),
            description=data.get("description"),
            category=data.get("category"),
            priority=data.get("priority"),
            order_id=data.get("order_id"),
        )
    return _ok(ticket, 201)


@api.get("/support")
@auth_required()
def list_my_tickets():
    state = _state()
    with state.db.session() as conn:
        page = state.services.tickets.list_own(conn, g.actor, page=_page(), status=request.args.get("status"))
    return jsonify(page.as_response())


@api.get("/support/all")
@auth_required(*STAFF)
def list_all_tickets():
    state = _state()
    with state.db.session() as conn:
        page = state.services.tickets.list_all(
            conn,
            g.actor,
            page=_page(),
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            category=request.args.get("category"),
        )
    return jsonify(page.as_response())


@api.get("/support/stats")
@auth_required(*STAFF)
def ticket_stats():
    state = _state()
    with state.db.session() as conn:
        stats = state.services.tickets.stats(conn, g.actor)
    return _ok(stats)


@api.get("/support/<ticket_id>")
@auth_required()
def get_ticket(ticket_id: str):
    state = _state()
    with state.db.session() as conn:
        ticket = state.services.tickets.get_ticket(conn, g.actor, ticket_id)
    return _ok(ticket)


@api.post("/support/<ticket_id>/messages")
@auth_required()
def add_ticket_message(ticket_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        ticket = state.services.tickets.add_message(
            conn,
            g.actor,
            ticket_id,
            message=data.get("message"),
            is_internal=parse_flag(data.get("is_internal", False), "is_internal"),
            attachments=data.get("attachments"),
        )
    return _ok(ticket)


@api.put("/support/<ticket_id>/status")
@auth_required(*STAFF)
def update_ticket_status(ticket_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        ticket = state.services.tickets.update_status(
            conn,
            g.actor,
            ticket_id,
            status=str(data.get("status") or ""),
            resolution_note=data.get("resolution_note"),
        )
    return _ok(ticket)


@api.put("/support/<ticket_id>/assign")
@auth_required(*STAFF)
def assign_ticket(ticket_id: str):
    state = _state()
    data = _body()
    assignee = data.get("assigned_to") or data.get("assignedTo")
    if not assignee:
        raise InvalidInput("assigned_to is required.")
    with _write() as conn:
        ticket = state.services.tickets.assign(conn, g.actor, ticket_id, assignee_id=assignee)
    return _ok(ticket)


@api.put("/support/<ticket_id>/rate")
@auth_required("customer")
def rate_ticket(ticket_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        ticket = state.services.tickets.rate(
            conn, g.actor, ticket_id, rating=data.get("rating"), feedback=data.get("feedback")
        )
    return _ok(ticket)


# -- categories -------------------------------------------------------------


@api.get("/categories")
def list_categories():
    state = _state()
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    if include_inactive:
        require_role(_authenticate(), STAFF)
    with state.db.session() as conn:
        rows = state.services.categories.list_categories(conn, include_inactive=include_inactive)
    return jsonify({"success": True, "count": len(rows), "data": rows})


@api.get("/categories/<category_id>")
def get_category(category_id: str):
    state = _state()
    with state.db.session() as conn:
        row = state.services.categories.get_category(conn, category_id)
    return _ok(row)


@api.post("/categories")
@auth_required("admin")
def create_category():
    state = _state()
    with _write() as conn:
        row = state.services.categories.create_category(conn, g.actor, _body())
    return _ok(row, 201)


@api.put("/categories/<category_id>")
@auth_required("admin")
def update_category(category_id: str):
    state = _state()
    with _write() as conn:
        row = state.services.categories.update_category(conn, g.actor, category_id, _body())
    return _ok(row)


@api.delete("/categories/<category_id>")
@auth_required("admin")
def delete_category(category_id: str):
    state = _state()
    with _write() as conn:
        state.services.categories.delete_category(conn, g.actor, category_id)
    return _ok({})


# -- pincodes ---------------------------------------------------------------


@api.get("/pincodes/check/<code>")
def check_pincode(code: str):
    state = _state()
    with state.db.session() as conn:
        result = state.services.pincodes.check(conn, code)
    return jsonify({"success": True, **result})


@api.get("/pincodes")
@auth_required(*STAFF)
def list_pincodes():
    state = _state()
    serviceable = request.args.get("serviceable")
    with state.db.session() as conn:
        page = state.services.pincodes.list_pincodes(
            conn,
            g.actor,
            page=_page(),
            city=request.args.get("city"),
            state=request.args.get("state"),
            serviceable=None if serviceable in (None, "") else serviceable.lower() == "true",
        )
    return jsonify(page.as_response())


@api.post("/pincodes")
@auth_required("admin")
def create_pincode():
    state = _state()
    with _write() as conn:
        row = state.services.pincodes.create_pincode(conn, g.actor, _body())
    return _ok(row, 201)


@api.put("/pincodes/<pincode_id>")
@auth_required("admin")
def update_pincode(pincode_id: str):
    state = _state()
    with _write() as conn:
        row = state.services.pincodes.update_pincode(conn, g.actor, pincode_id, _body())
    return _ok(row)


@api.delete("/pincodes/<pincode_id>")
@auth_required("admin")
def delete_pincode(pincode_id: str):
    state = _state()
    with _write() as conn:
        state.services.pincodes.delete_pincode(conn, g.actor, pincode_id)
    return _ok({})


@api.put("/pincodes/<pincode_id>/agents")
@auth_required(*STAFF)
def assign_pincode_agent(pincode_id: str):
    state = _state()
    data = _body()
    agent_id = data.get("pickup_agent_id") or data.get("pickupBoyId")
    if not agent_id:
        raise InvalidInput("pickup_agent_id is required.")
    with _write() as conn:
        row = state.services.pincodes.assign_agent(conn, g.actor, pincode_id, agent_id=agent_id)
    return _ok(row)


@api.delete("/pincodes/<pincode_id>/agents/<agent_id>")
@auth_required(*STAFF)
def remove_pincode_agent(pincode_id: str, agent_id: str):
    state = _state()
    with _write() as conn:
        row = state.services.pincodes.remove_agent(conn, g.actor, pincode_id, agent_id=agent_id)
    return _ok(row)


# -- users ------------------------------------------------------------------


@api.post("/users")
@auth_required("admin")
def create_user():
    state = _state()
    with _write() as conn:
        user = state.services.users.create_user(conn, g.actor, _body())
    return _ok(user, 201)


@api.get("/users/pickup-agents")
@auth_required(*STAFF)
def list_pickup_agents():
    state = _state()
    with state.db.session() as conn:
        rows = state.services.users.list_pickup_agents(
            conn, g.actor, pincode=request.args.get("pincode"), city=request.args.get("city")
        )
    return jsonify({"success": True, "count": len(rows), "data": rows})


@api.get("/users/pickup-agents/availability")
@auth_required(*STAFF)
def pickup_agent_availability():
    state = _state()
    with state.db.session() as conn:
        result = state.services.users.pickup_agent_availability(
            conn, g.actor, pincode=request.args.get("pincode"), city=request.args.get("city")
        )
    return jsonify({"success": True, "count": len(result["data"]), **result})


@api.get("/users")
@auth_required(*STAFF)
def list_users():
    state = _state()
    with state.db.session() as conn:
        page = state.services.users.list_users(
            conn,
            g.actor,
            page=_page(),
            role=request.args.get("role"),
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
    return jsonify(page.as_response())


@api.get("/users/stats")
@auth_required(*STAFF)
def user_stats():
    state = _state()
    with state.db.session() as conn:
        stats = state.services.users.stats(conn, g.actor)
    return _ok(stats)


@api.get("/users/<user_id>")
@auth_required()
def get_user(user_id: str):
    state = _state()
    with state.db.session() as conn:
        user = state.services.users.get_user(conn, g.actor, user_id)
    return _ok(user)


@api.put("/users/<user_id>")
@auth_required(*STAFF)
def update_user(user_id: str):
    state = _state()
    with _write() as conn:
        user = state.services.users.update_user(conn, g.actor, user_id, _body())
    return _ok(user)


@api.delete("/users/<user_id>")
@auth_required("admin")
def delete_user(user_id: str):
    state = _state()
    with _write() as conn:
        state.services.users.delete_user(conn, g.actor, user_id)
    return _ok({})


@api.put("/users/<user_id>/status")
@auth_required("admin")
def set_user_status(user_id: str):
    state = _state()
    is_active = parse_flag(_body().get("is_active"), "is_active")
    with _write() as conn:
        user = state.services.users.set_active(conn, g.actor, user_id, is_active=is_active)
    return _ok(user)


@api.put("/users/<user_id>/reset-password")
@auth_required("admin")
def reset_user_password(user_id: str):
    state = _state()
    data = _body()
    with _write() as conn:
        result = state.services.users.reset_password(
            conn, g.actor, user_id, new_password=data.get("new_password", data.get("newPassword"))
        )
    return jsonify({"success": True, **result})


# -- reports ----------------------------------------------------------------


def _report_window() -> tuple[datetime, datetime]:
    now = utcnow()
    try:
        date_to = parse_iso(request.args["to"]) if request.args.get("to") else now
        date_from = parse_iso(request.args["from"]) if request.args.get("from") else date_to - timedelta(days=30)
    except ValueError as e:
        raise InvalidInput("from/to must be ISO dates.") from e
    if date_from >= date_to:
        raise InvalidInput("from must be before to.")
    return date_from, date_to


@api.get("/reports/orders")
@auth_required(*STAFF)
def orders_report():
    state = _state()
    date_from, date_to = _report_window()
    with state.db.session() as conn:
        summary = order_summary(conn, date_from, date_to)
    return _ok(summary)


@api.get("/reports/agents/<agent_id>")
@auth_required(*STAFF)
def agent_report(agent_id: str):
    state = _state()
    aid = parse_id(agent_id, "pickup agent id")
    with state.db.session() as conn:
        agent = state.services.repos.users.get(conn, aid)
        if agent is None or agent["role"] != "pickup_agent":
            raise NotFound("Pickup agent not found")
        perf = agent_performance(conn, aid, utcnow())
    name = f"{agent['first_name']} {agent['last_name']}"
    return _ok({"agent": {"id": aid, "name": name, "email": agent.get("email")}, "performance": perf})
