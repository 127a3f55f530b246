from __future__ import annotations

import pytest

from ewaste.config import parse_config
from ewaste.domain import Actor, new_id
from ewaste.notifications import NotificationDispatcher
from ewaste.services.order_service import AddressInput, OrderItemInput, PickupDetailsInput
from ewaste.wiring import build_services

from fakes import JWT_SECRET, FakeDb, RecordingMailer, fake_repositories


def _add_user(repos, role: str, first: str, last: str, *, pincode: str = "560001", city: str = "Bengaluru") -> Actor:
    user_id = new_id()
    repos.users.create(
        None,
        user_id=user_id,
        first_name=first,
        last_name=last,
        email=f"{first.lower()}.{last.lower()}@example.com",
        phone="9876543210",
        password_hash="x",
        role=role,
        address={"street": "1 MG Road", "city": city, "state": "Karnataka", "pincode": pincode, "landmark": ""},
    )
    return Actor(id=user_id, role=role)


@pytest.fixture
def repos():
    return fake_repositories()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notifier(mailer):
    return NotificationDispatcher(mailer, max_retries=0, retry_backoff=0)


@pytest.fixture
def services(repos, notifier):
    return build_services(repos, notifier=notifier, frontend_url="http://localhost:5173")


@pytest.fixture
def customer(repos):
    return _add_user(repos, "customer", "Asha", "Rao")


@pytest.fixture
def other_customer(repos):
    return _add_user(repos, "customer", "Vikram", "Shah")


@pytest.fixture
def agent(repos):
    return _add_user(repos, "pickup_agent", "Ravi", "Kumar")


@pytest.fixture
def other_agent(repos):
    return _add_user(repos, "pickup_agent", "Sunil", "Das", pincode="400001", city="Mumbai")


@pytest.fixture
def manager(repos):
    return _add_user(repos, "manager", "Meera", "Iyer")


@pytest.fixture
def admin(repos):
    return _add_user(repos, "admin", "Anil", "Menon")


@pytest.fixture
def phones(repos):
    """The seeded "Mobile Phones" category."""
    category = {
        "id": new_id(),
        "name": "Mobile Phones",
        "description": "Smartphones, feature phones, tablets",
        "icon": "smartphone",
        "base_price": 500.0,
        "unit": "piece",
        "condition_multipliers": {"excellent": 1.0, "good": 0.8, "fair": 0.6, "poor": 0.4, "broken": 0.2},
        "subcategories": [
            {"name": "Smartphones", "price_modifier": 1.2},
            {"name": "Feature Phones", "price_modifier": 0.8},
            {"name": "Tablets", "price_modifier": 1.5},
        ],
        "is_active": True,
        "sort_order": 1,
    }
    repos.categories.create(None, category=category)
    return category


@pytest.fixture
def pickup():
    return PickupDetailsInput(
        address=AddressInput(street="12 Residency Road", city="Bengaluru", state="Karnataka", pincode="560025"),
        preferred_date="2026-11-02",
        time_slot="morning",
        contact_number="9876543210",
    )


@pytest.fixture
def place_order(services, customer, phones, pickup):
    """Create an order for ``customer``: one good smartphone unless items are given."""

    def _place(actor=None, items=None, **kwargs):
        items = items or [OrderItemInput(category_id=phones["id"], condition="good", quantity=1, subcategory="Smartphones")]
        return services.orders.create_order(None, actor or customer, items=items, pickup=pickup, **kwargs)

    return _place


@pytest.fixture
def app_config():
    return parse_config(
        {
            "app": {"name": "E-Waste Pickup", "log_level": "DEBUG", "cors_origins": ["http://localhost:5173"]},
            "db": {"host": "localhost", "name": "ewaste", "user": "postgres", "password": "postgres"},
            "auth": {"jwt_secret": JWT_SECRET},
            "business": {"default_page_size": 10, "max_page_size": 50},
        }
    )


@pytest.fixture
def fake_db():
    return FakeDb()
