import pytest
from jose import jwt

from ewaste.web_app import create_app

from fakes import JWT_SECRET, CommitFailingDb


@pytest.fixture
def client(app_config, fake_db, repos, notifier):
    app = create_app(app_config, fake_db, repos=repos, notifier=notifier)
    app.testing = True
    return app.test_client()


def _auth(actor):
    token = jwt.encode({"sub": actor.id, "role": actor.role}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def _order_body(category_id):
    return {
        "items": [{"category_id": category_id, "subcategory": "Smartphones", "condition": "good", "quantity": 1}],
        "pickup_details": {
            "address": {"street": "12 Residency Road", "city": "Bengaluru", "state": "Karnataka", "pincode": "560025"},
            "preferred_date": "2026-11-02",
            "time_slot": "morning",
            "contact_number": "9876543210",
        },
        "pickup_charges": 50,
    }


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True


def test_requests_without_token_are_unauthorized(client):
    resp = client.get("/api/orders")
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "message": "Not authorized to access this route"}

    bad = client.get("/api/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_token_cookie_is_accepted(client, customer):
    token = jwt.encode({"sub": customer.id}, JWT_SECRET, algorithm="HS256")
    client.set_cookie("token", token)
    assert client.get("/api/orders").status_code == 200


def test_deactivated_users_are_rejected(client, customer, repos):
    repos.users.set_active(None, user_id=customer.id, is_active=False)
    assert client.get("/api/orders", headers=_auth(customer)).status_code == 401


def test_wrong_role_is_forbidden(client, agent):
    resp = client.get("/api/orders/all", headers=_auth(agent))
    assert resp.status_code == 403
    assert resp.get_json()["success"] is False


def test_order_flow_over_http(client, customer, admin, agent, phones):
    created = client.post("/api/orders", json=_order_body(phones["id"]), headers=_auth(customer))
    assert created.status_code == 201
    order = created.get_json()["data"]
    assert order["order_number"] == "EW000001"
    assert order["pricing"]["final_amount"] == 530
    pin = order["pin_verification"]["pin"]

    assigned = client.put(
        f"/api/orders/{order['id']}/assign", json={"pickupBoyId": agent.id}, headers=_auth(admin)
    )
    assert assigned.status_code == 200
    assert assigned.get_json()["data"]["status"] == "assigned"

    mine = client.get("/api/orders/assigned", headers=_auth(agent)).get_json()
    assert mine["count"] == 1
    assert "pin" not in mine["data"][0]["pin_verification"]

    wrong = "000000" if pin != "000000" else "111111"
    rejected = client.put(f"/api/orders/{order['id']}/verify", json={"pin": wrong}, headers=_auth(agent))
    assert rejected.status_code == 400
    assert rejected.get_json()["message"] == "Invalid PIN"

    verified = client.put(f"/api/orders/{order['id']}/verify", json={"pin": pin}, headers=_auth(agent))
    assert verified.status_code == 200
    assert verified.get_json()["data"]["status"] == "picked_up"

    cancel = client.put(f"/api/orders/{order['id']}/cancel", json={}, headers=_auth(customer))
    assert cancel.status_code == 400
    assert cancel.get_json()["message"] == "Order cannot be cancelled at this stage"


def test_order_list_response_shape(client, customer, phones, app_config):
    for _ in range(3):
        client.post("/api/orders", json=_order_body(phones["id"]), headers=_auth(customer))

    body = client.get("/api/orders?page=1&limit=2", headers=_auth(customer)).get_json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["total"] == 3
    assert body["pagination"] == {"next": {"page": 2, "limit": 2}}

    capped = client.get("/api/orders?limit=1000", headers=_auth(customer)).get_json()
    assert capped["count"] == 3

    assert client.get("/api/orders?page=0", headers=_auth(customer)).status_code == 400


def test_malformed_ids_and_bodies(client, customer):
    resp = client.get("/api/orders/12345", headers=_auth(customer))
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Invalid order id format"

    bad_json = client.post(
        "/api/orders", data="{oops", content_type="application/json", headers=_auth(customer)
    )
    assert bad_json.status_code == 400


def test_unknown_order_is_not_found(client, customer):
    resp = client.get("/api/orders/0f8fad5b-d9cb-469f-a165-70867728950e", headers=_auth(customer))
    assert resp.status_code == 404


def test_support_flow_over_http(client, customer, manager):
    created = client.post(
        "/api/support",
        json={"subject": "Payment pending", "description": "No UPI credit yet", "category": "payment_issue"},
        headers=_auth(customer),
    )
    assert created.status_code == 201
    ticket = created.get_json()["data"]
    assert ticket["ticket_number"] == "ST000001"

    rate_early = client.put(f"/api/support/{ticket['id']}/rate", json={"rating": 5}, headers=_auth(customer))
    assert rate_early.status_code == 400
    assert rate_early.get_json()["message"] == "Can only rate resolved tickets"

    client.post(
        f"/api/support/{ticket['id']}/messages",
        json={"message": "internal note", "is_internal": True},
        headers=_auth(manager),
    )
    seen = client.get(f"/api/support/{ticket['id']}", headers=_auth(customer)).get_json()["data"]
    assert seen["messages"] == []

    resolved = client.put(f"/api/support/{ticket['id']}/status", json={"status": "resolved"}, headers=_auth(manager))
    assert resolved.status_code == 200
    rated = client.put(f"/api/support/{ticket['id']}/rate", json={"rating": 5}, headers=_auth(customer))
    assert rated.status_code == 200

    stats = client.get("/api/support/stats", headers=_auth(manager)).get_json()["data"]
    assert stats["resolved"] == 1
    assert client.get("/api/support/stats", headers=_auth(customer)).status_code == 403
    assert client.get("/api/support", headers=_auth(customer)).get_json()["total"] == 1


def test_public_catalog_routes(client, phones, admin):
    cats = client.get("/api/categories").get_json()
    assert cats["count"] == 1
    assert cats["data"][0]["name"] == "Mobile Phones"
    assert client.get(f"/api/categories/{phones['id']}").status_code == 200
    assert client.get("/api/categories?include_inactive=true").status_code == 401

    unknown = client.get("/api/pincodes/check/110001").get_json()
    assert unknown == {"success": True, "serviceable": False, "message": "Service not available in this area"}
    assert client.get("/api/pincodes/check/11").status_code == 400

    created = client.post(
        "/api/pincodes",
        json={"pincode": "560001", "city": "Bengaluru", "state": "Karnataka", "area": "MG Road", "pickup_charges": 30},
        headers=_auth(admin),
    )
    assert created.status_code == 201
    known = client.get("/api/pincodes/check/560001").get_json()
    assert known["serviceable"] is True
    assert known["data"]["available_pickup_agents"] == 0


def test_admin_creates_users(client, admin, customer):
    body = {
        "first_name": "Kiran",
        "last_name": "Patil",
        "email": "kiran@example.com",
        "phone": "9123456780",
        "password": "secret1",
        "role": "pickup_agent",
        "address": {"pincode": "411001", "city": "Pune"},
    }
    created = client.post("/api/users", json=body, headers=_auth(admin))
    assert created.status_code == 201
    assert "password_hash" not in created.get_json()["data"]
    assert client.post("/api/users", json=body, headers=_auth(customer)).status_code == 403

    agents = client.get("/api/users/pickup-agents?city=pune", headers=_auth(admin)).get_json()
    assert agents["count"] == 1


def test_unknown_route_is_json(client):
    resp = client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_failed_commit_sends_no_mail(app_config, repos, notifier, customer, phones):
    app = create_app(app_config, CommitFailingDb(), repos=repos, notifier=notifier)
    app.testing = True

    resp = app.test_client().post("/api/orders", json=_order_body(phones["id"]), headers=_auth(customer))

    assert resp.status_code == 500
    assert resp.get_json() == {"success": False, "message": "Server error"}
    assert notifier.queue.qsize() == 0


def test_committed_order_queues_its_confirmation(client, fake_db, notifier, customer, phones):
    resp = client.post("/api/orders", json=_order_body(phones["id"]), headers=_auth(customer))
    assert resp.status_code == 201
    assert fake_db.commits == 1
    assert notifier.queue.qsize() == 1


@pytest.mark.parametrize(
    "body",
    [
        {"subject": 123, "description": "No UPI credit yet"},
        {"subject": "Payment pending", "description": ["No", "credit"]},
    ],
)
def test_non_string_ticket_fields_are_rejected(client, customer, body):
    resp = client.post("/api/support", json=body, headers=_auth(customer))
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_message_fields_are_type_checked(client, customer, manager):
    ticket = client.post(
        "/api/support", json={"subject": "Late pickup", "description": "Agent did not come"}, headers=_auth(customer)
    ).get_json()["data"]
    url = f"/api/support/{ticket['id']}/messages"

    assert client.post(url, json={"message": ["hi"]}, headers=_auth(customer)).status_code == 400
    assert client.post(url, json={"message": "hi", "attachments": "a.png"}, headers=_auth(customer)).status_code == 400
    flag = client.post(url, json={"message": "note", "is_internal": "false"}, headers=_auth(manager))
    assert flag.status_code == 400
    assert flag.get_json()["message"] == "is_internal must be true or false."

    ok = client.post(url, json={"message": "hi", "attachments": ["a.png"]}, headers=_auth(customer))
    assert ok.status_code == 200
    assert ok.get_json()["data"]["messages"][0]["attachments"] == ["a.png"]


def test_non_string_cancel_reason_is_rejected(client, customer, phones):
    order = client.post("/api/orders", json=_order_body(phones["id"]), headers=_auth(customer)).get_json()["data"]
    resp = client.put(f"/api/orders/{order['id']}/cancel", json={"reason": 42}, headers=_auth(customer))
    assert resp.status_code == 400
    assert client.get(f"/api/orders/{order['id']}", headers=_auth(customer)).get_json()["data"]["status"] == "pending"


def test_pincode_flags_must_be_booleans(client, admin):
    body = {"pincode": "560001", "city": "Bengaluru", "state": "Karnataka", "area": "MG Road", "is_serviceable": "false"}
    resp = client.post("/api/pincodes", json=body, headers=_auth(admin))
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "is_serviceable must be true or false."


def test_user_administration_routes(client, admin, manager, customer, agent):
    listed = client.get("/api/users?role=customer", headers=_auth(manager)).get_json()
    assert listed["total"] == 1
    assert listed["data"][0]["id"] == customer.id
    assert client.get("/api/users", headers=_auth(customer)).status_code == 403

    stats = client.get("/api/users/stats", headers=_auth(manager)).get_json()["data"]
    assert stats["total_users"] == 4
    assert stats["pickup_agents"] == 1

    updated = client.put(f"/api/users/{customer.id}", json={"phone": "9000000001"}, headers=_auth(manager))
    assert updated.status_code == 200
    assert updated.get_json()["data"]["phone"] == "9000000001"
    promote = client.put(f"/api/users/{customer.id}", json={"role": "manager"}, headers=_auth(manager))
    assert promote.status_code == 403

    reset = client.put(f"/api/users/{agent.id}/reset-password", json={"newPassword": "fresh-pass"}, headers=_auth(admin))
    assert reset.get_json() == {"success": True, "message": "Password reset successfully"}
    assert client.put(
        f"/api/users/{agent.id}/reset-password", json={"new_password": "abc"}, headers=_auth(admin)
    ).status_code == 400

    deleted = client.delete(f"/api/users/{customer.id}", headers=_auth(admin))
    assert deleted.get_json() == {"success": True, "data": {}}
    assert client.get("/api/orders", headers=_auth(customer)).status_code == 401


def test_pickup_agent_availability_route(client, manager, agent, other_agent):
    body = client.get("/api/users/pickup-agents/availability", headers=_auth(manager)).get_json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["summary"] == {"available": 2, "busy": 0, "overloaded": 0, "can_take_orders": 2}
    assert body["data"][0]["workload"]["max_capacity"] == 8

    mumbai = client.get("/api/users/pickup-agents/availability?city=mumbai", headers=_auth(manager)).get_json()
    assert [a["id"] for a in mumbai["data"]] == [other_agent.id]
    assert client.get("/api/users/pickup-agents/availability", headers=_auth(agent)).status_code == 403


def test_receipt_download(client, services, place_order, customer, other_customer, admin, agent):
    order = place_order()
    assert client.get(f"/api/orders/{order['id']}/receipt", headers=_auth(customer)).status_code == 400

    oid = order["id"]
    services.orders.assign_agent(None, admin, oid, agent_id=agent.id)
    services.orders.verify_pin(None, agent, oid, pin=order["pin_verification"]["pin"])
    services.orders.update_status(None, admin, oid, status="processing")
    services.orders.update_status(None, admin, oid, status="completed", actual_total=450)

    resp = client.get(f"/api/orders/{oid}/receipt", headers=_auth(customer))
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.headers["Content-Disposition"] == 'attachment; filename="receipt-EW000001.pdf"'
    assert resp.data.startswith(b"%PDF")
    assert client.get(f"/api/orders/{oid}/receipt", headers=_auth(other_customer)).status_code == 401
