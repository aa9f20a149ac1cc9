"""
Schema migrations.

Plain `.sql` files under `migrations/`, applied in file-name order. Each
applied version is recorded in `schema_migrations` with the sha256 of the file;
editing an already-applied file is refused rather than silently skipped.
Concurrent runners (several API replicas starting at once) serialize on a
Postgres advisory lock.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from awesomemy.db.config import DatabaseConfig, build_postgres_dsn, load_database_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_LOCK_KEY = 470118230551


class MigrationError(RuntimeError):
    pass


@dataclass(frozen=True)
class Migration:
    version: str  # file stem, e.g. "0001_init"
    checksum: str
    sql: str

    @classmethod
    def from_path(cls, path: Path) -> "Migration":
        raw = path.read_bytes()
        return cls(version=path.stem, checksum=hashlib.sha256(raw).hexdigest(), sql=raw.decode("utf-8"))


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    if not directory.is_dir():
        return []
    return [Migration.from_path(p) for p in sorted(directory.glob("*.sql"))]


def pending(migrations: Iterable[Migration], applied: Dict[str, str]) -> List[Migration]:
    """
    Return the migrations not yet in `applied` (version -> checksum).

    Raises MigrationError when an applied version's file no longer matches.
    """
    todo: List[Migration] = []
    for m in migrations:
        recorded = applied.get(m.version)
        if recorded is None:
            todo.append(m)
        elif recorded != m.checksum:
            raise MigrationError(
                f"{m.version} was modified after being applied (db={recorded[:12]} file={m.checksum[:12]})"
            )
    return todo


_BOOKKEEPING_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version text PRIMARY KEY,
  checksum text NOT NULL,
  applied_at timestamptz NOT NULL DEFAULT now()
);
"""


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> List[str]:
    """Apply everything pending; returns the applied versions in order."""
    import psycopg  # type: ignore[import-not-found]

    available = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []

    with psycopg.connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
        try:
            conn.execute(_BOOKKEEPING_DDL)
            rows = conn.execute("SELECT version, checksum FROM schema_migrations;").fetchall()
            for m in pending(available, {str(v): str(c) for v, c in rows}):
                with conn.transaction():
                    conn.execute(m.sql)
                    conn.execute(
                        "INSERT INTO schema_migrations(version, checksum) VALUES (%s, %s);",
                        (m.version, m.checksum),
                    )
                logger.info("Applied migration %s", m.version)
                done.append(m.version)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))

    return done


def maybe_auto_migrate(cfg: Optional[DatabaseConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate only when DB_AUTO_MIGRATE is on and Postgres is configured.

    Returns (attempted, summary).
    """
    cfg = cfg or load_database_config()
    if not cfg.auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    versions = apply_migrations(dsn=dsn)
    return True, (f"applied {', '.join(versions)}" if versions else "schema up to date")
