"""
Pytest config.

This repo is usually run from a checkout, so local imports like `import awesomemy`
rely on the repo root being on sys.path. We pin that here so tests can always
import the local package even when invoked through a global `pytest` entrypoint.

Also provides in-memory stand-ins for the Postgres repositories and a fake
OAuth2 provider that enforces PKCE and single-use codes like a real one.
"""

from __future__ import annotations

import dataclasses
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from awesomemy.auth.config import AuthConfig, ProviderCredentials, load_auth_config  # noqa: E402
from awesomemy.auth.models import PROVIDER_EMAIL_SLOTS, AccessToken, User  # noqa: E402
from awesomemy.auth.pkce import pkce_challenge  # noqa: E402
from awesomemy.errors import InvalidGrant, UniqueConflict, UpstreamIdentityError  # noqa: E402
from awesomemy.pagination import ListingFilter, PageWindow  # noqa: E402
from awesomemy.resources import Resource, ResourceKind  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_auth_config_cache():
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


def make_config(**overrides: Any) -> AuthConfig:
    base = AuthConfig(
        session_name="awesome_my_session",
        session_prefix="session:",
        session_persist=True,
        session_same_site="lax",
        session_secure=False,
        session_lifetime_seconds=3600,
        session_secret=None,
        session_store="memory",
        public_base_url="http://testserver",
        frontend_base_url="http://frontend.test/",
        cors_origins=["http://frontend.test"],
        github=ProviderCredentials(client_id="gh-client", client_secret="gh-secret"),
        google=None,
        oidc=None,
        oidc_discovery_url=None,
        pagination_max_limit=20,
    )
    return dataclasses.replace(base, **overrides)


class InMemoryUserRepository:
    """Enforces the same per-slot uniqueness as the `users` table."""

    def __init__(self) -> None:
        self.rows: List[User] = []
        self._lock = threading.Lock()
        self._next_id = 1

    def get_by_email(self, provider: str, email: str) -> Optional[User]:
        with self._lock:
            for u in self.rows:
                if u.emails.get(provider) == email:
                    return u
        return None

    def get_by_uuid(self, user_uuid: uuid.UUID) -> Optional[User]:
        with self._lock:
            for u in self.rows:
                if u.uuid == user_uuid:
                    return u
        return None

    def insert_with_email(self, provider: str, email: str) -> User:
        with self._lock:
            if any(u.emails.get(provider) == email for u in self.rows):
                raise UniqueConflict(f"users.{provider}_email already exists")
            emails = {p: None for p in PROVIDER_EMAIL_SLOTS}
            emails[provider] = email
            user = User(
                user_id=self._next_id,
                uuid=uuid.uuid4(),
                created_at=datetime.now(timezone.utc),
                emails=emails,
            )
            self._next_id += 1
            self.rows.append(user)
            return user


class InMemoryResourceRepository:
    def __init__(self) -> None:
        self.rows: List[Resource] = []
        self._next_id = 1

    def add(self, kind: ResourceKind, owner_id: int, **attrs: Any) -> Resource:
        return self.insert(kind, owner_id, attrs)

    def list(
        self, kind: ResourceKind, window: PageWindow, flt: ListingFilter, *, owner_id: Optional[int] = None
    ) -> Tuple[List[Resource], int]:
        rows = [r for r in self.rows if r.kind == kind.name]
        if owner_id is not None:
            rows = [r for r in rows if r.user_id == owner_id]
        if flt.tags:
            rows = [r for r in rows if set(flt.tags) <= set(r.attrs.get("tags") or [])]
        if flt.keyword:
            kw = flt.keyword.lower()
            rows = [
                r
                for r in rows
                if kw in str(r.attrs.get("name", "")).lower() or kw in str(r.attrs.get("description", "")).lower()
            ]
        rows.sort(key=lambda r: (r.created_at, r.resource_id), reverse=flt.order_by != "asc")
        return rows[window.offset : window.offset + window.limit], len(rows)

    def get(self, kind: ResourceKind, resource_uuid: uuid.UUID) -> Optional[Resource]:
        for r in self.rows:
            if r.kind == kind.name and r.uuid == resource_uuid:
                return r
        return None

    def insert(self, kind: ResourceKind, owner_id: int, attrs: Dict[str, Any]) -> Resource:
        res = Resource(
            kind=kind.name,
            resource_id=self._next_id,
            uuid=uuid.uuid4(),
            user_id=owner_id,
            created_at=datetime.now(timezone.utc),
            attrs={c: attrs.get(c) for c in kind.columns},
        )
        self._next_id += 1
        self.rows.append(res)
        return res

    def update(self, kind: ResourceKind, resource_id: int, attrs: Dict[str, Any]) -> Resource:
        for i, r in enumerate(self.rows):
            if r.kind == kind.name and r.resource_id == resource_id:
                self.rows[i] = dataclasses.replace(r, attrs={c: attrs.get(c) for c in kind.columns})
                return self.rows[i]
        raise AssertionError("update of missing row")

    def delete(self, kind: ResourceKind, resource_id: int) -> None:
        self.rows = [r for r in self.rows if not (r.kind == kind.name and r.resource_id == resource_id)]


class FakeProvider:
    """
    Provider double: codes are bound to the S256 challenge they were issued for
    and can be redeemed once, as with a real authorization server.
    """

    def __init__(self, name: str = "github", email: Optional[str] = "octo@example.com") -> None:
        self.name = name
        self.email = email
        self._codes: Dict[str, str] = {}  # code -> challenge
        self._used: set = set()
        self.exchanges: List[Tuple[str, str]] = []

    def authorization_url(self, state: str, challenge: str) -> str:
        return f"https://provider.test/authorize?state={state}&code_challenge={challenge}&code_challenge_method=S256"

    def issue_code(self, authorization_url: str) -> str:
        """What the provider does when the user approves: bind a code to the challenge."""
        q = parse_qs(urlparse(authorization_url).query)
        code = f"code-{len(self._codes) + 1}"
        self._codes[code] = q["code_challenge"][0]
        return code

    def exchange_code(self, code: str, verifier: str) -> AccessToken:
        self.exchanges.append((code, verifier))
        challenge = self._codes.get(code)
        if challenge is None or code in self._used:
            raise InvalidGrant("unknown or already redeemed code")
        self._used.add(code)
        if pkce_challenge(verifier) != challenge:
            raise InvalidGrant("PKCE verification failed")
        return AccessToken(access_token=f"token-for-{code}")

    def fetch_verified_email(self, token: AccessToken) -> str:
        if not self.email:
            raise UpstreamIdentityError("no verified email")
        return self.email

    @staticmethod
    def state_from(authorization_url: str) -> str:
        return parse_qs(urlparse(authorization_url).query)["state"][0]


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def resources() -> InMemoryResourceRepository:
    return InMemoryResourceRepository()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def api_app(users, resources, fake_provider):
    from awesomemy.api.server import build_services, create_app
    from awesomemy.auth.providers import ProviderRegistry
    from awesomemy.auth.session import MemorySessionStore

    services = build_services(
        make_config(),
        session_store=MemorySessionStore(),
        users=users,
        resources=resources,
        providers=ProviderRegistry([fake_provider]),
    )
    return create_app(services)


@pytest.fixture
def login(fake_provider):
    """Drive begin -> provider -> callback on a TestClient; returns both responses."""

    def _login(client, email: Optional[str] = None):
        if email is not None:
            fake_provider.email = email
        begin = client.get("/auth/oauth2/github", follow_redirects=False)
        assert begin.status_code == 307
        url = begin.headers["location"]
        callback = client.get(
            "/auth/oauth2/github/callback",
            params={"code": fake_provider.issue_code(url), "state": fake_provider.state_from(url)},
            follow_redirects=False,
        )
        return begin, callback

    return _login
