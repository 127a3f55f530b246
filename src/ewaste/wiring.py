from __future__ import annotations

from dataclasses import dataclass, field

from .notifications import NotificationDispatcher
from .repositories.category_repo import CategoryRepository
from .repositories.order_repo import OrderRepository
from .repositories.pincode_repo import PincodeRepository
from .repositories.ticket_repo import TicketRepository
from .repositories.user_repo import UserRepository
from .services.category_service import CategoryService
from .services.order_service import OrderService
from .services.pincode_service import PincodeService
from .services.ticket_service import TicketService
from .services.user_service import UserService


@dataclass
class Repositories:
    users: UserRepository = field(default_factory=UserRepository)
    categories: CategoryRepository = field(default_factory=CategoryRepository)
    pincodes: PincodeRepository = field(default_factory=PincodeRepository)
    orders: OrderRepository = field(default_factory=OrderRepository)
    tickets: TicketRepository = field(default_factory=TicketRepository)


@dataclass
class Services:
    repos: Repositories
    orders: OrderService
    tickets: TicketService
    categories: CategoryService
    pincodes: PincodeService
    users: UserService


def build_services(
    repos: Repositories | None = None,
    *,
    notifier: NotificationDispatcher | None = None,
    frontend_url: str = "",
) -> Services:
    repos = repos or Repositories()
    return Services(
        repos=repos,
        orders=OrderService(
            order_repo=repos.orders,
            category_repo=repos.categories,
            user_repo=repos.users,
            notifier=notifier,
            frontend_url=frontend_url,
        ),
        tickets=TicketService(
            ticket_repo=repos.tickets,
            order_repo=repos.orders,
            user_repo=repos.users,
            notifier=notifier,
        ),
        categories=CategoryService(category_repo=repos.categories),
        pincodes=PincodeService(pincode_repo=repos.pincodes, user_repo=repos.users),
        users=UserService(user_repo=repos.users, order_repo=repos.orders, notifier=notifier),
    )
