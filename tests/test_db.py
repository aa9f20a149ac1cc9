from __future__ import annotations

import uuid
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg import errors as pg_errors

from awesomemy.db.config import build_postgres_dsn, load_database_config
from awesomemy.db.migrate import Migration, MigrationError, load_migrations, maybe_auto_migrate, pending
from awesomemy.db.resources import PostgresResourceRepository, _where
from awesomemy.db.users import PostgresUserRepository
from awesomemy.errors import DatabaseUnavailable, UniqueConflict
from awesomemy.pagination import ListingFilter, PageWindow
from awesomemy.resources import PROJECTS


class _Conn:
    """One queued result set per execute() call."""

    def __init__(self, results=None, raises=None) -> None:
        self.calls = []
        self._results = list(results or [])
        self._current = []
        self._raises = raises

    def execute(self, sql: str, params=None):  # type: ignore[no-untyped-def]
        self.calls.append((sql, params))
        if self._raises is not None:
            raise self._raises
        self._current = self._results.pop(0) if self._results else []
        return self

    def fetchone(self):  # type: ignore[no-untyped-def]
        return self._current[0] if self._current else None

    def fetchall(self):  # type: ignore[no-untyped-def]
        return list(self._current)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False


def test_bundled_migrations_are_ordered() -> None:
    migs = load_migrations()
    assert [m.version for m in migs][0] == "0001_init"
    assert "CREATE TABLE IF NOT EXISTS users" in migs[0].sql
    assert "CREATE TABLE IF NOT EXISTS sessions" in migs[0].sql


def test_pending_skips_applied_and_refuses_edits() -> None:
    a = Migration(version="0001_a", checksum="aaa", sql="")
    b = Migration(version="0002_b", checksum="bbb", sql="")
    assert pending([a, b], {}) == [a, b]
    assert pending([a, b], {"0001_a": "aaa"}) == [b]
    with pytest.raises(MigrationError):
        pending([a, b], {"0001_a": "changed"})


def test_auto_migrate_off_by_default(monkeypatch) -> None:
    monkeypatch.delenv("DB_AUTO_MIGRATE", raising=False)
    assert maybe_auto_migrate() == (False, "DB_AUTO_MIGRATE is disabled")


def test_dsn_from_parts(monkeypatch) -> None:
    monkeypatch.delenv("POSTGRES_DSN", raising=False)
    monkeypatch.setenv("POSTGRES_HOST", "db")
    monkeypatch.setenv("POSTGRES_DB", "awesome")
    monkeypatch.setenv("POSTGRES_USER", "app")
    monkeypatch.setenv("POSTGRES_PASSWORD", "p w'd")
    dsn = build_postgres_dsn(load_database_config())
    assert dsn is not None
    assert "host=db" in dsn
    assert "dbname=awesome" in dsn

    monkeypatch.delenv("POSTGRES_PASSWORD")
    assert build_postgres_dsn(load_database_config()) is None

    monkeypatch.setenv("POSTGRES_DSN", "postgresql://x")
    assert build_postgres_dsn(load_database_config()) == "postgresql://x"


def test_where_clause_for_filters() -> None:
    where, params = _where(ListingFilter(tags=["rust", "cli"], keyword="tool"), owner_id=7)
    assert where == "WHERE user_id = %s AND tags @> %s AND (name ILIKE %s OR description ILIKE %s)"
    assert params == [7, ["rust", "cli"], "%tool%", "%tool%"]
    assert _where(ListingFilter(), owner_id=None) == ("", [])


def test_list_uses_window_and_counts(monkeypatch) -> None:
    now = datetime.now(timezone.utc)
    row = (1, uuid.uuid4(), 7, now, "name here", "description", ["rust"], None, None)
    conn = _Conn(results=[[row], [(11,)]])
    repo = PostgresResourceRepository("dsn")
    monkeypatch.setattr(repo, "_connect", lambda: conn)

    items, total = repo.list(PROJECTS, PageWindow(page=2, limit=5, offset=5), ListingFilter(order_by="asc"))
    assert [i.attrs["name"] for i in items] == ["name here"]
    assert total == 11
    list_sql, list_params = conn.calls[0]
    assert "ORDER BY created_at ASC, project_id ASC" in list_sql
    assert list_params[-2:] == [5, 5]
    assert conn.calls[1][0].startswith("SELECT COUNT(*) FROM projects")


def test_user_insert_conflict_maps_to_unique_conflict(monkeypatch) -> None:
    repo = PostgresUserRepository("dsn")
    monkeypatch.setattr(repo, "_connect", lambda: _Conn(raises=pg_errors.UniqueViolation("duplicate key")))
    with pytest.raises(UniqueConflict):
        repo.insert_with_email("github", "octo@example.com")


def test_user_storage_errors_map_to_database_unavailable(monkeypatch) -> None:
    repo = PostgresUserRepository("dsn")
    monkeypatch.setattr(repo, "_connect", lambda: _Conn(raises=psycopg.OperationalError("connection refused")))
    with pytest.raises(DatabaseUnavailable):
        repo.get_by_uuid(uuid.uuid4())
    with pytest.raises(DatabaseUnavailable):
        repo.insert_with_email("google", "g@example.com")


def test_user_row_mapping(monkeypatch) -> None:
    u = uuid.uuid4()
    now = datetime.now(timezone.utc)
    repo = PostgresUserRepository("dsn")
    conn = _Conn(results=[[(3, u, now, None, "g@example.com", None)]])
    monkeypatch.setattr(repo, "_connect", lambda: conn)

    user = repo.get_by_email("google", "g@example.com")
    assert user is not None
    assert user.user_id == 3
    assert user.uuid == u
    assert user.emails == {"github": None, "google": "g@example.com", "oidc": None}
    assert "WHERE google_email = %s" in conn.calls[0][0]
