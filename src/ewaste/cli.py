from __future__ import annotations

from datetime import timedelta

from .access import parse_id
from .db import Db
from .domain import new_id, utcnow
from .errors import AppError
from .importers import ImportError, import_categories_json, import_pincodes_csv
from .reports import agent_performance, order_summary
from .services.user_service import hash_password
from .wiring import Repositories


def _prompt(msg: str) -> str:
    return input(msg).strip()


def run_cli(db: Db, repos: Repositories | None = None) -> None:
    repos = repos or Repositories()

    while True:
        print("\n=== E-Waste Pickup admin ===")
        print("1) Initialise database schema")
        print("2) Create admin user")
        print("3) Import categories JSON")
        print("4) Import pincodes CSV")
        print("5) List categories")
        print("6) List recent orders")
        print("7) Report orders (last 30 days)")
        print("8) Report pickup agent performance")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                db.init_schema()
                print("Schema applied.")

            elif choice == "2":
                first = _prompt("first name: ")
                last = _prompt("last name: ")
                email = _prompt("email: ").lower()
                phone = _prompt("phone (10 digits): ")
                password = _prompt("password: ")
                pincode = _prompt("pincode: ")
                if len(password) < 6:
                    raise ValueError("password must be at least 6 characters")
                with db.transaction() as conn:
                    if repos.users.get_by_email(conn, email) is not None:
                        raise ValueError(f"{email} is already registered")
                    user_id = repos.users.create(
                        conn,
                        user_id=new_id(),
                        first_name=first,
                        last_name=last,
                        email=email,
                        phone=phone,
                        password_hash=hash_password(password),
                        role="admin",
                        address={"street": "", "city": "", "state": "", "pincode": pincode, "landmark": ""},
                    )
                print(f"Created admin user id={user_id}")

            elif choice == "3":
                path = _prompt("path to categories.json: ")
                with db.transaction() as conn:
                    n = import_categories_json(conn, path, repos.categories)
                print(f"Imported/updated categories: {n}")

            elif choice == "4":
                path = _prompt("path to pincodes.csv: ")
                with db.transaction() as conn:
                    n = import_pincodes_csv(conn, path, repos.pincodes)
                print(f"Imported/updated pincodes: {n}")

            elif choice == "5":
                with db.session() as conn:
                    rows = repos.categories.list(conn, active_only=False)
                for r in rows:
                    active = "" if r["is_active"] else " (inactive)"
                    print(f'{r["name"]}{active} base={r["base_price"]} unit={r["unit"]}')

            elif choice == "6":
                with db.session() as conn:
                    rows, total = repos.orders.list(conn, offset=0, limit=30)
                print(f"Showing {len(rows)} of {total} orders")
                for r in rows:
                    print(
                        f'{r["order_number"]} status={r["status"]} '
                        f'estimated={r["pricing"]["estimated_total"]} created={r["created_at"]}'
                    )

            elif choice == "7":
                d2 = utcnow()
                d1 = d2 - timedelta(days=30)
                with db.session() as conn:
                    rep = order_summary(conn, d1, d2)
                print(f"Orders report (last 30 days): {rep}")

            elif choice == "8":
                agent_id = parse_id(_prompt("pickup agent id: "), "pickup agent id")
                with db.session() as conn:
                    agent = repos.users.get(conn, agent_id)
                    if agent is None or agent["role"] != "pickup_agent":
                        raise ValueError("no pickup agent with that id")
                    perf = agent_performance(conn, agent_id, utcnow())
                print(f'{agent["first_name"]} {agent["last_name"]}: {perf}')

            else:
                print("Unknown choice.")

        except AppError as e:
            print(f"[INPUT ERROR] {e.message}")
        except ImportError as e:
            print(f"[IMPORT ERROR] {e}")
        except ValueError as e:
            print(f"[VALUE ERROR] {e}")
        except Exception as e:
            print(f"[ERROR] {type(e).__name__}: {e}")
