from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0}


@dataclass(frozen=True)
class ProviderCredentials:
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class AuthConfig:
    # Session cookie + store
    session_name: str
    session_prefix: str
    session_persist: bool
    session_same_site: str  # strict|lax|none
    session_secure: bool
    session_lifetime_seconds: int
    session_secret: Optional[str]  # Optional: signs the cookie token when set
    session_store: str  # postgres|memory

    # Redirects
    public_base_url: Optional[str]  # Required to build OAuth2 callback URLs
    frontend_base_url: str
    cors_origins: List[str]

    # OAuth2 providers (a provider is enabled when its credentials are set)
    github: Optional[ProviderCredentials]
    google: Optional[ProviderCredentials]
    oidc: Optional[ProviderCredentials]
    oidc_discovery_url: Optional[str]

    # Listings
    pagination_max_limit: int


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, "") or "").strip() or default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name).lower()
    if raw in ("1", "true", "yes", "y", "on"):
        return True
    if raw in ("0", "false", "no", "n", "off"):
        return False
    return default


def _parse_csv(value: str) -> List[str]:
    items = [x.strip() for x in (value or "").split(",")]
    return [x for x in items if x]


def parse_duration(value: str) -> int:
    """
    Parse a duration such as `24h`, `30m`, `1h30m`, `90s` or a bare number of seconds.

    Raises ValueError on anything else.
    """
    raw = (value or "").strip().lower()
    if not raw:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", raw):
        return int(float(raw))
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(raw):
        if m.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(raw):
        raise ValueError(f"invalid duration: {value!r}")
    return int(total)


def _credentials(prefix: str) -> Optional[ProviderCredentials]:
    client_id = _env(f"{prefix}_CLIENT_ID")
    client_secret = _env(f"{prefix}_CLIENT_SECRET")
    if not client_id or not client_secret:
        return None
    return ProviderCredentials(client_id=client_id, client_secret=client_secret)


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    A provider is enabled when both its client id and secret are set
    (the generic OIDC provider additionally needs OIDC_DISCOVERY_URL).
    """
    public_base_url = _env("PUBLIC_BASE_URL") or None
    # Default: secure cookies when base URL is https; otherwise allow local dev.
    secure_default = (public_base_url or "").startswith("https://")

    same_site = _env("SESSION_SAME_SITE", "lax").lower()
    if same_site not in ("strict", "lax", "none"):
        same_site = "lax"

    try:
        lifetime = parse_duration(_env("SESSION_LIFETIME", "24h"))
    except ValueError:
        lifetime = 24 * 3600
    if lifetime < 60:
        lifetime = 60

    try:
        max_limit = int(_env("PAGINATION_MAX_LIMIT", "20"))
    except ValueError:
        max_limit = 20
    if max_limit < 1:
        max_limit = 20

    store = _env("SESSION_STORE", "postgres").lower()
    if store not in ("postgres", "memory"):
        store = "postgres"

    return AuthConfig(
        session_name=_env("SESSION_NAME", "awesome_my_session"),
        session_prefix=_env("SESSION_PREFIX", "session:"),
        session_persist=_env_bool("SESSION_PERSIST", True),
        session_same_site=same_site,
        session_secure=_env_bool("SESSION_SECURE", secure_default),
        session_lifetime_seconds=lifetime,
        session_secret=_env("SESSION_SECRET") or None,
        session_store=store,
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        frontend_base_url=_env("FRONTEND_BASE_URL", "/"),
        cors_origins=_parse_csv(_env("CORS_ORIGINS")),
        github=_credentials("GITHUB"),
        google=_credentials("GOOGLE"),
        oidc=_credentials("OIDC"),
        oidc_discovery_url=_env("OIDC_DISCOVERY_URL") or None,
        pagination_max_limit=max_limit,
    )
