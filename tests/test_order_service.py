import pytest

from ewaste.errors import Forbidden, InvalidInput, InvalidState, NotFound, Unauthorized
from ewaste.pagination import PageRequest
from ewaste.services.order_service import OrderItemInput, visible_order


def test_create_order_prices_items_and_numbers_order(services, customer, place_order, repos):
    order = place_order(pickup_charges=50)

    assert order["order_number"] == "EW000001"
    assert order["status"] == "pending"
    assert order["customer_id"] == customer.id
    assert order["items"][0]["estimated_price"] == 480
    assert order["items"][0]["category_name"] == "Mobile Phones"
    assert order["pricing"] == {"estimated_total": 480, "actual_total": 0, "pickup_charges": 50.0, "final_amount": 530.0}
    assert order["payment"]["method"] == "cash"
    assert order["payment"]["status"] == "pending"
    assert len(order["pin_verification"]["pin"]) == 6
    assert order["pin_verification"]["is_verified"] is False
    assert [(t["status"], t["note"]) for t in order["timeline"]] == [("pending", "Order created")]
    assert repos.orders.get(None, order["id"]) == order


def test_order_numbers_follow_the_sequence(place_order):
    assert [place_order()["order_number"] for _ in range(3)] == ["EW000001", "EW000002", "EW000003"]


def test_create_order_sends_confirmation_with_pin(place_order, notifier, mailer):
    order = place_order()
    notifier.drain()
    assert [m.kind for m in mailer.sent] == ["order_confirmation"]
    assert order["pin_verification"]["pin"] in mailer.sent[0].body
    assert mailer.sent[0].to == "asha.rao@example.com"


def test_create_order_validation(services, customer, phones, pickup, agent):
    with pytest.raises(InvalidInput):
        services.orders.create_order(None, customer, items=[], pickup=pickup)
    with pytest.raises(InvalidInput):
        services.orders.create_order(
            None, customer, items=[OrderItemInput(category_id=phones["id"], condition="mint", quantity=1)], pickup=pickup
        )
    with pytest.raises(InvalidInput):
        services.orders.create_order(
            None, customer, items=[OrderItemInput(category_id=phones["id"], condition="good", quantity=0)], pickup=pickup
        )
    with pytest.raises(NotFound):
        services.orders.create_order(
            None,
            customer,
            items=[OrderItemInput(category_id="0f8fad5b-d9cb-469f-a165-70867728950e", condition="good", quantity=1)],
            pickup=pickup,
        )
    with pytest.raises(Forbidden):
        services.orders.create_order(
            None, agent, items=[OrderItemInput(category_id=phones["id"], condition="good", quantity=1)], pickup=pickup
        )


def test_create_order_rejects_bad_pickup_details(services, customer, phones, pickup):
    items = [OrderItemInput(category_id=phones["id"], condition="good", quantity=1)]
    pickup.address.pincode = "5600"
    with pytest.raises(InvalidInput):
        services.orders.create_order(None, customer, items=items, pickup=pickup)
    pickup.address.pincode = "560025"
    pickup.time_slot = "night"
    with pytest.raises(InvalidInput):
        services.orders.create_order(None, customer, items=items, pickup=pickup)


def test_lifecycle_to_completion(services, place_order, admin, agent, notifier, mailer):
    order = place_order()
    oid = order["id"]

    services.orders.update_status(None, admin, oid, status="confirmed")
    services.orders.assign_agent(None, admin, oid, agent_id=agent.id)
    services.orders.update_status(None, agent, oid, status="in_transit")
    picked = services.orders.verify_pin(None, agent, oid, pin=order["pin_verification"]["pin"])
    assert picked["status"] == "picked_up"
    assert picked["pin_verification"]["is_verified"] is True
    assert picked["pin_verification"]["verified_at"]

    services.orders.update_status(None, admin, oid, status="processing")
    done = services.orders.update_status(None, admin, oid, status="completed", actual_total=450)

    assert done["status"] == "completed"
    assert done["pricing"]["actual_total"] == 450
    assert done["pricing"]["final_amount"] == 480
    assert [t["status"] for t in done["timeline"]] == [
        "pending",
        "confirmed",
        "assigned",
        "in_transit",
        "picked_up",
        "processing",
        "completed",
    ]
    assert done["timeline"][2]["note"] == "Assigned to Ravi Kumar"
    assert done["timeline"][4]["note"] == "PIN verified and items picked up"

    notifier.drain()
    assert [m.kind for m in mailer.sent] == [
        "order_confirmation",
        "pickup_assigned",
        "new_assignment",
        "order_completed",
    ]


def test_wrong_pin_does_not_mutate(services, place_order, admin, agent, repos):
    order = place_order()
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    before = repos.orders.get(None, order["id"])

    wrong = "000000" if order["pin_verification"]["pin"] != "000000" else "111111"
    with pytest.raises(InvalidInput, match="Invalid PIN"):
        services.orders.verify_pin(None, agent, order["id"], pin=wrong)

    assert repos.orders.get(None, order["id"]) == before


def test_second_pin_verification_is_rejected(services, place_order, admin, agent, repos):
    order = place_order()
    pin = order["pin_verification"]["pin"]
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    services.orders.verify_pin(None, agent, order["id"], pin=pin)

    with pytest.raises(InvalidState):
        services.orders.verify_pin(None, agent, order["id"], pin=pin)
    timeline = repos.orders.get(None, order["id"])["timeline"]
    assert [t["status"] for t in timeline].count("picked_up") == 1


def test_only_the_assigned_agent_may_verify(services, place_order, admin, agent, other_agent):
    order = place_order()
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    with pytest.raises(Unauthorized):
        services.orders.verify_pin(None, other_agent, order["id"], pin=order["pin_verification"]["pin"])


def test_pin_cannot_be_verified_before_assignment(services, place_order, agent, repos):
    order = place_order()
    stored = repos.orders.get(None, order["id"])
    stored["assigned_agent_id"] = agent.id
    repos.orders.save(None, order=stored)
    with pytest.raises(InvalidState):
        services.orders.verify_pin(None, agent, order["id"], pin=order["pin_verification"]["pin"])


def test_cancel_appends_exactly_one_entry(services, place_order, customer):
    order = place_order()
    cancelled = services.orders.cancel_order(None, customer, order["id"])
    assert cancelled["status"] == "cancelled"
    assert len(cancelled["timeline"]) == 2
    assert cancelled["timeline"][-1]["note"] == "Order cancelled by customer"
    assert cancelled["timeline"][-1]["updated_by"] == customer.id

    with pytest.raises(InvalidState):
        services.orders.cancel_order(None, customer, order["id"])


def test_cancel_is_blocked_after_pickup(services, place_order, customer, admin, agent, repos):
    order = place_order()
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    services.orders.verify_pin(None, agent, order["id"], pin=order["pin_verification"]["pin"])
    before = repos.orders.get(None, order["id"])

    with pytest.raises(InvalidState, match="Order cannot be cancelled at this stage"):
        services.orders.cancel_order(None, customer, order["id"])
    assert repos.orders.get(None, order["id"]) == before


def test_cancel_requires_the_owner(services, place_order, other_customer, admin):
    order = place_order()
    with pytest.raises(Unauthorized):
        services.orders.cancel_order(None, other_customer, order["id"])
    cancelled = services.orders.cancel_order(None, admin, order["id"], reason="Duplicate request")
    assert cancelled["timeline"][-1]["note"] == "Duplicate request"


def test_agent_status_updates_are_limited(services, place_order, admin, agent, other_agent):
    order = place_order()
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)

    with pytest.raises(Unauthorized):
        services.orders.update_status(None, other_agent, order["id"], status="in_transit")
    with pytest.raises(InvalidState):
        services.orders.update_status(None, agent, order["id"], status="cancelled")
    with pytest.raises(InvalidInput):
        services.orders.update_status(None, admin, order["id"], status="lost")
    updated = services.orders.update_status(None, agent, order["id"], status="in_transit")
    assert updated["timeline"][-1]["note"] == "Status updated to in_transit"


def test_assign_requires_an_active_pickup_agent(services, place_order, admin, manager, agent, repos):
    order = place_order()
    with pytest.raises(NotFound):
        services.orders.assign_agent(None, admin, order["id"], agent_id=manager.id)
    repos.users.set_active(None, user_id=agent.id, is_active=False)
    with pytest.raises(NotFound):
        services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)


def test_cannot_assign_a_cancelled_order(services, place_order, customer, admin, agent):
    order = place_order()
    services.orders.cancel_order(None, customer, order["id"])
    with pytest.raises(InvalidState):
        services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)


def test_get_order_is_scoped(services, place_order, customer, other_customer, agent, admin):
    order = place_order()
    assert services.orders.get_order(None, customer, order["id"])["id"] == order["id"]
    assert services.orders.get_order(None, admin, order["id"])["id"] == order["id"]
    with pytest.raises(NotFound):
        services.orders.get_order(None, other_customer, order["id"])
    with pytest.raises(NotFound):
        services.orders.get_order(None, agent, order["id"])
    with pytest.raises(InvalidInput):
        services.orders.get_order(None, customer, "not-an-id")


def test_repeated_reads_are_identical(services, place_order, customer):
    order = place_order()
    first = services.orders.get_order(None, customer, order["id"])
    second = services.orders.get_order(None, customer, order["id"])
    assert first == second


def test_agents_never_see_the_pin(services, place_order, admin, agent):
    order = place_order()
    assigned = services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    shown = visible_order(assigned, agent)
    assert "pin" not in shown["pin_verification"]
    assert "pin" in assigned["pin_verification"]
    assert visible_order(assigned, admin) is assigned


def test_list_orders_is_role_scoped(services, place_order, customer, other_customer, admin, agent):
    mine = [place_order() for _ in range(3)]
    place_order(actor=other_customer)
    services.orders.assign_agent(None, admin, mine[0]["id"], agent_id=agent.id)

    page = services.orders.list_orders(None, customer, page=PageRequest(page=1, limit=2))
    assert page.total == 3
    assert [o["id"] for o in page.items] == [mine[2]["id"], mine[1]["id"]]
    assert page.pagination == {"next": {"page": 2, "limit": 2}}

    page2 = services.orders.list_orders(None, customer, page=PageRequest(page=2, limit=2))
    assert page2.pagination == {"prev": {"page": 1, "limit": 2}}

    assert services.orders.list_orders(None, admin, page=PageRequest()).total == 4
    assert services.orders.list_orders(None, admin, page=PageRequest(), status="all").total == 4
    assert services.orders.list_orders(None, admin, page=PageRequest(), status="assigned").total == 1
    assert [o["id"] for o in services.orders.list_orders(None, agent, page=PageRequest()).items] == [mine[0]["id"]]
    assert services.orders.list_orders(None, agent, page=PageRequest(), status="completed").total == 0

    found = services.orders.list_orders(None, admin, page=PageRequest(), search="000002")
    assert [o["order_number"] for o in found.items] == ["EW000002"]


def test_scenario_ordered_then_cancelled(services, place_order, customer, admin):
    order = place_order()
    services.orders.update_status(None, admin, order["id"], status="confirmed")
    cancelled = services.orders.cancel_order(None, customer, order["id"])
    assert [t["status"] for t in cancelled["timeline"]] == ["pending", "confirmed", "cancelled"]
    with pytest.raises(InvalidState):
        services.orders.update_status(None, admin, order["id"], status="processing")


def _force_status(repos, order_id, status):
    stored = repos.orders.get(None, order_id)
    stored["status"] = status
    repos.orders.save(None, order=stored)
    return stored


@pytest.mark.parametrize("status", ["pending", "confirmed", "assigned", "in_transit"])
def test_cancel_succeeds_before_pickup_with_one_entry(services, place_order, customer, repos, status):
    order = place_order()
    before = _force_status(repos, order["id"], status)

    cancelled = services.orders.cancel_order(None, customer, order["id"])

    assert cancelled["status"] == "cancelled"
    assert cancelled["timeline"][:-1] == before["timeline"]
    assert cancelled["timeline"][-1]["status"] == "cancelled"
    assert repos.orders.get(None, order["id"]) == cancelled


@pytest.mark.parametrize("status", ["picked_up", "processing", "completed", "cancelled"])
def test_cancel_fails_from_pickup_onwards_without_mutation(services, place_order, customer, admin, repos, status):
    order = place_order()
    before = _force_status(repos, order["id"], status)

    for actor in (customer, admin):
        with pytest.raises(InvalidState):
            services.orders.cancel_order(None, actor, order["id"])
    assert repos.orders.get(None, order["id"]) == before


def test_scenario_cancel_while_processing(services, place_order, customer, admin, agent, repos):
    order = place_order()
    services.orders.assign_agent(None, admin, order["id"], agent_id=agent.id)
    services.orders.verify_pin(None, agent, order["id"], pin=order["pin_verification"]["pin"])
    services.orders.update_status(None, admin, order["id"], status="processing")
    before = repos.orders.get(None, order["id"])

    with pytest.raises(InvalidState, match="Order cannot be cancelled at this stage"):
        services.orders.cancel_order(None, customer, order["id"])
    assert repos.orders.get(None, order["id"]) == before


def test_reason_and_note_must_be_strings(services, place_order, customer, admin, repos):
    order = place_order()
    before = repos.orders.get(None, order["id"])
    with pytest.raises(InvalidInput, match="reason must be a string"):
        services.orders.cancel_order(None, customer, order["id"], reason=["changed my mind"])
    with pytest.raises(InvalidInput, match="note must be a string"):
        services.orders.update_status(None, admin, order["id"], status="confirmed", note=42)
    assert repos.orders.get(None, order["id"]) == before


def _complete(services, order, admin, agent):
    oid = order["id"]
    services.orders.assign_agent(None, admin, oid, agent_id=agent.id)
    services.orders.verify_pin(None, agent, oid, pin=order["pin_verification"]["pin"])
    services.orders.update_status(None, admin, oid, status="processing")
    return services.orders.update_status(None, admin, oid, status="completed", actual_total=450)


def test_receipt_for_completed_order(services, place_order, customer, manager, admin, agent):
    order = place_order(pickup_charges=50)
    with pytest.raises(InvalidState, match="Receipt can only be generated for completed orders"):
        services.orders.receipt(None, customer, order["id"])

    _complete(services, order, admin, agent)
    filename, pdf = services.orders.receipt(None, customer, order["id"])
    assert filename == "receipt-EW000001.pdf"
    assert pdf.startswith(b"%PDF")
    assert services.orders.receipt(None, manager, order["id"])[1].startswith(b"%PDF")


def test_receipt_is_for_owner_and_staff_only(services, place_order, other_customer, admin, agent):
    order = place_order()
    _complete(services, order, admin, agent)
    with pytest.raises(Unauthorized, match="Not authorized to access this receipt"):
        services.orders.receipt(None, other_customer, order["id"])
    with pytest.raises(Unauthorized):
        services.orders.receipt(None, agent, order["id"])
