from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DatabaseConfig:
    """Postgres connection settings: either a full DSN or the POSTGRES_* parts."""

    dsn: Optional[str]
    host: Optional[str]
    port: int
    name: Optional[str]
    user: Optional[str]
    password: Optional[str]
    auto_migrate: bool

    @property
    def has_parts(self) -> bool:
        return bool(self.host and self.name and self.user and self.password)


def _get(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def load_database_config() -> DatabaseConfig:
    try:
        port = int(_get("POSTGRES_PORT") or "5432")
    except ValueError:
        port = 5432
    return DatabaseConfig(
        dsn=_get("POSTGRES_DSN"),
        host=_get("POSTGRES_HOST"),
        port=port,
        name=_get("POSTGRES_DB"),
        user=_get("POSTGRES_USER"),
        password=_get("POSTGRES_PASSWORD"),
        auto_migrate=(_get("DB_AUTO_MIGRATE") or "").lower() in ("1", "true", "yes", "y", "on"),
    )


def build_postgres_dsn(cfg: DatabaseConfig) -> Optional[str]:
    """POSTGRES_DSN wins; otherwise all of host/db/user/password are required."""
    if cfg.dsn:
        return cfg.dsn
    if not cfg.has_parts:
        return None
    # make_conninfo quotes values (passwords with spaces or quotes).
    from psycopg.conninfo import make_conninfo  # type: ignore[import-not-found]

    return make_conninfo(host=cfg.host, port=cfg.port, dbname=cfg.name, user=cfg.user, password=cfg.password)
