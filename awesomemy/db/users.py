from __future__ import annotations

import uuid
from typing import Optional

from awesomemy.auth.models import PROVIDER_EMAIL_SLOTS, User, email_column
from awesomemy.errors import DatabaseUnavailable, UniqueConflict

_USER_COLUMNS = "user_id, uuid, created_at, " + ", ".join(email_column(p) for p in PROVIDER_EMAIL_SLOTS)


def _row_to_user(row) -> User:
    emails = {}
    for i, provider in enumerate(PROVIDER_EMAIL_SLOTS):
        v = row[3 + i]
        emails[provider] = str(v) if v else None
    return User(
        user_id=int(row[0]),
        uuid=row[1] if isinstance(row[1], uuid.UUID) else uuid.UUID(str(row[1])),
        created_at=row[2],
        emails=emails,
    )


class PostgresUserRepository:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self):
        import psycopg  # type: ignore[import-not-found]

        return psycopg.connect(self._dsn)

    def _fetch_one(self, sql: str, params: tuple) -> Optional[User]:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                row = conn.execute(sql, params).fetchone()
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"user query failed: {e}") from e
        return _row_to_user(row) if row else None

    def get_by_email(self, provider: str, email: str) -> Optional[User]:
        col = email_column(provider)
        return self._fetch_one(f"SELECT {_USER_COLUMNS} FROM users WHERE {col} = %s;", (email,))

    def get_by_uuid(self, user_uuid: uuid.UUID) -> Optional[User]:
        return self._fetch_one(f"SELECT {_USER_COLUMNS} FROM users WHERE uuid = %s;", (user_uuid,))

    def insert_with_email(self, provider: str, email: str) -> User:
        """Insert a user with only `provider`'s slot populated."""
        import psycopg  # type: ignore[import-not-found]
        from psycopg import errors as pg_errors  # type: ignore[import-not-found]

        col = email_column(provider)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"INSERT INTO users ({col}) VALUES (%s) RETURNING {_USER_COLUMNS};",
                    (email,),
                ).fetchone()
        except pg_errors.UniqueViolation as e:
            raise UniqueConflict(f"users.{col} already exists") from e
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"user insert failed: {e}") from e
        if not row:
            raise DatabaseUnavailable("user insert returned no row")
        return _row_to_user(row)
