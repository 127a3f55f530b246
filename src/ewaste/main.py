from __future__ import annotations

import sys

from .cli import run_cli
from .config import ConfigError, configure_logging, load_config
from .db import Db, DbError
from .notifications import NotificationDispatcher
from .web_app import create_app


def serve(cfg, db: Db, host: str = "127.0.0.1", port: int = 5000) -> None:
    notifier = NotificationDispatcher.from_config(cfg.mail)
    notifier.start()
    try:
        app = create_app(cfg, db, notifier=notifier)
        app.run(host=host, port=port)
    finally:
        notifier.stop(timeout=5)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    try:
        cfg = load_config()
        configure_logging(cfg)
        db = Db(cfg.db)
        if args and args[0] == "serve":
            port = int(args[1]) if len(args) > 1 else 5000
            serve(cfg, db, port=port)
        else:
            run_cli(db)
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        print(f"[DB ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
