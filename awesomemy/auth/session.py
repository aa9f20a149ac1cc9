"""
Server-side sessions.

The cookie only carries an opaque, unguessable token (optionally signed);
the session contents live in a `SessionStore`. Tokens are rotated at every
privilege boundary via `SessionManager.renew_token`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

from itsdangerous import BadSignature, Signer

from awesomemy.auth.config import AuthConfig
from awesomemy.auth.util import random_token
from awesomemy.errors import StoreUnavailable

logger = logging.getLogger(__name__)

SESSION_SALT = "awesomemy-session-v1"

KEY_OAUTH2_VERIFIER = "oauth2:verifier"
KEY_OAUTH2_STATE = "oauth2:state"
KEY_USER_UUID = "user:uuid"

# Keys cleared at logout.
IDENTITY_KEYS = (KEY_USER_UUID,)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    token: Optional[str]
    expires_at: datetime
    values: Dict[str, Any] = field(default_factory=dict)
    modified: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def get_str(self, key: str) -> str:
        v = self.values.get(key)
        return v.strip() if isinstance(v, str) else ""

    def put(self, key: str, value: Any) -> None:
        self.values[key] = value
        self.modified = True

    def pop(self, key: str) -> Any:
        if key not in self.values:
            return None
        self.modified = True
        return self.values.pop(key)


class SessionStore(Protocol):
    """
    Remote key/value store for session contents.

    Implementations raise StoreUnavailable when the backend cannot be reached.
    """

    def find(self, key: str) -> Optional[Tuple[Dict[str, Any], datetime]]:
        """Return (values, expiry) for a live session, or None."""

    def commit(self, key: str, values: Dict[str, Any], expires_at: datetime) -> None:
        """Insert or replace a session."""

    def delete(self, key: str) -> None:
        """Remove a session; missing keys are not an error."""


class MemorySessionStore:
    """In-process store for local development and tests (not shared across workers)."""

    def __init__(self) -> None:
        self._items: Dict[str, Tuple[Dict[str, Any], datetime]] = {}
        self._lock = threading.Lock()

    def find(self, key: str) -> Optional[Tuple[Dict[str, Any], datetime]]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            values, expires_at = item
            if expires_at <= utcnow():
                del self._items[key]
                return None
            return dict(values), expires_at

    def commit(self, key: str, values: Dict[str, Any], expires_at: datetime) -> None:
        with self._lock:
            self._items[key] = (dict(values), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class PostgresSessionStore:
    """Session store backed by the `sessions` table (see db/migrations)."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self):
        import psycopg  # type: ignore[import-not-found]

        return psycopg.connect(self._dsn)

    def find(self, key: str) -> Optional[Tuple[Dict[str, Any], datetime]]:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT data, expiry FROM sessions WHERE token = %s AND now() < expiry;",
                    (key,),
                ).fetchone()
        except psycopg.Error as e:
            raise StoreUnavailable(f"session find failed: {e}") from e
        if not row:
            return None
        data = row[0] if isinstance(row[0], dict) else {}
        return data, row[1]

    def commit(self, key: str, values: Dict[str, Any], expires_at: datetime) -> None:
        import psycopg  # type: ignore[import-not-found]
        from psycopg.types.json import Jsonb  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sessions(token, data, expiry)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (token) DO UPDATE SET data = EXCLUDED.data, expiry = EXCLUDED.expiry;
                    """,
                    (key, Jsonb(values), expires_at),
                )
        except psycopg.Error as e:
            raise StoreUnavailable(f"session commit failed: {e}") from e

    def delete(self, key: str) -> None:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM sessions WHERE token = %s;", (key,))
        except psycopg.Error as e:
            raise StoreUnavailable(f"session delete failed: {e}") from e

    def delete_expired(self) -> int:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM sessions WHERE expiry <= now();")
                return int(cur.rowcount or 0)
        except psycopg.Error as e:
            raise StoreUnavailable(f"session cleanup failed: {e}") from e


class SessionManager:
    """Loads, rotates and saves sessions; owns the cookie format."""

    def __init__(self, cfg: AuthConfig, store: SessionStore) -> None:
        self.cfg = cfg
        self.store = store
        self._signer = Signer(cfg.session_secret, salt=SESSION_SALT) if cfg.session_secret else None

    @property
    def cookie_name(self) -> str:
        return self.cfg.session_name

    def _key(self, token: str) -> str:
        return f"{self.cfg.session_prefix}{token}"

    def _new_expiry(self) -> datetime:
        return utcnow() + timedelta(seconds=self.cfg.session_lifetime_seconds)

    def _token_from_cookie(self, value: Optional[str]) -> Optional[str]:
        v = (value or "").strip()
        if not v:
            return None
        if self._signer is None:
            return v
        try:
            return self._signer.unsign(v).decode("ascii")
        except (BadSignature, UnicodeDecodeError):
            return None

    def cookie_value(self, session: Session) -> str:
        token = session.token or ""
        if self._signer is None:
            return token
        return self._signer.sign(token).decode("ascii")

    def load(self, cookie_value: Optional[str]) -> Session:
        """Return the stored session for this cookie, or a fresh anonymous one."""
        token = self._token_from_cookie(cookie_value)
        if token:
            found = self.store.find(self._key(token))
            if found is not None:
                values, expires_at = found
                return Session(token=token, expires_at=expires_at, values=values)
        return Session(token=None, expires_at=self._new_expiry())

    def renew_token(self, session: Session) -> None:
        """
        Issue a new token for the session, keeping its contents.

        The old token is deleted from the store so it can never be replayed.
        """
        if session.token:
            self.store.delete(self._key(session.token))
        session.token = random_token(32)
        session.expires_at = self._new_expiry()
        session.modified = True
        logger.debug("Session token rotated")

    def save(self, session: Session) -> bool:
        """Persist a modified session. Returns True when a cookie must be (re)issued."""
        if not session.modified:
            return False
        if not session.token:
            session.token = random_token(32)
        self.store.commit(self._key(session.token), session.values, session.expires_at)
        session.modified = False
        return True

    def cookie_kwargs(self, session: Session) -> dict:
        kwargs = {
            "key": self.cookie_name,
            "value": self.cookie_value(session),
            "httponly": True,
            "secure": self.cfg.session_secure,
            "samesite": self.cfg.session_same_site,
            "path": "/",
        }
        if self.cfg.session_persist:
            remaining = int((session.expires_at - utcnow()).total_seconds())
            kwargs["max_age"] = max(remaining, 0)
        return kwargs
