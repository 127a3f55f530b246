from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomllib

DEFAULT_CONFIG_PATH = "config.toml"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"


@dataclass(frozen=True)
class AuthConfig:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    cookie_name: str = "token"


@dataclass(frozen=True)
class MailConfig:
    enabled: bool = False
    host: str = "localhost"
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = "E-Waste Pickup <no-reply@localhost>"
    use_tls: bool = True
    max_retries: int = 3
    retry_backoff: float = 2.0


@dataclass(frozen=True)
class BusinessConfig:
    default_page_size: int = 10
    max_page_size: int = 100
    frontend_url: str = "http://localhost:5173"


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    auth: AuthConfig
    mail: MailConfig = field(default_factory=MailConfig)
    business: BusinessConfig = field(default_factory=BusinessConfig)
    cors_origins: tuple[str, ...] = ()


def config_path_from_env() -> Path:
    return Path(os.environ.get("EWASTE_CONFIG", DEFAULT_CONFIG_PATH))


def load_config(path: str | Path | None = None) -> AppConfig:
    p = Path(path) if path is not None else config_path_from_env()
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    return parse_config(data)


def parse_config(data: dict) -> AppConfig:
    try:
        app = data["app"]
        db = data["db"]
        auth = data["auth"]
        mail = data.get("mail", {})
        business = data.get("business", {})
        cfg = AppConfig(
            name=str(app.get("name", "E-Waste Pickup")),
            log_level=str(app.get("log_level", "INFO")).upper(),
            cors_origins=tuple(str(o) for o in app.get("cors_origins", [])),
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
            ),
            auth=AuthConfig(
                jwt_secret=str(auth["jwt_secret"]),
                jwt_algorithm=str(auth.get("jwt_algorithm", "HS256")),
                cookie_name=str(auth.get("cookie_name", "token")),
            ),
            mail=MailConfig(
                enabled=bool(mail.get("enabled", False)),
                host=str(mail.get("host", "localhost")),
                port=int(mail.get("port", 587)),
                user=str(mail.get("user", "")),
                password=str(mail.get("password", "")),
                sender=str(mail.get("sender", MailConfig.sender)),
                use_tls=bool(mail.get("use_tls", True)),
                max_retries=int(mail.get("max_retries", 3)),
                retry_backoff=float(mail.get("retry_backoff", 2.0)),
            ),
            business=BusinessConfig(
                default_page_size=int(business.get("default_page_size", 10)),
                max_page_size=int(business.get("max_page_size", 100)),
                frontend_url=str(business.get("frontend_url", BusinessConfig.frontend_url)),
            ),
        )
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e

    if not cfg.auth.jwt_secret:
        raise ConfigError("auth.jwt_secret cannot be empty.")
    if cfg.business.default_page_size < 1 or cfg.business.max_page_size < cfg.business.default_page_size:
        raise ConfigError("business page sizes must satisfy 1 <= default_page_size <= max_page_size.")
    return cfg


def configure_logging(cfg: AppConfig) -> None:
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format=LOG_FORMAT)
