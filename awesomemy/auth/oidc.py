"""
Generic OpenID Connect support: discovery documents, JWKS and ID-token checks.

Discovery and key sets change rarely, so both are cached per URL for an hour.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Tuple

import jwt  # PyJWT
import requests

from awesomemy.auth.pkce import HTTP_TIMEOUT_SECONDS

CACHE_TTL_SECONDS = 3600


class _DocumentCache:
    """URL -> JSON object, refetched once older than the TTL."""

    def __init__(self, kind: str, ttl: float = CACHE_TTL_SECONDS) -> None:
        self.kind = kind
        self.ttl = ttl
        self._docs: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Dict[str, Any]:
        with self._lock:
            hit = self._docs.get(url)
        if hit is not None and time.time() - hit[0] < self.ttl:
            return hit[1]

        resp = requests.get(url, timeout=HTTP_TIMEOUT_SECONDS)
        resp.raise_for_status()
        doc = resp.json()
        if not isinstance(doc, dict):
            raise ValueError(f"{self.kind} at {url} is not a JSON object")
        with self._lock:
            self._docs[url] = (time.time(), doc)
        return doc

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()


_discovery = _DocumentCache("OIDC discovery document")
_jwks = _DocumentCache("JWKS")


def get_discovery(discovery_url: str) -> Dict[str, Any]:
    return _discovery.get(discovery_url)


def discovery_endpoint(discovery_url: str, key: str) -> str:
    value = str(get_discovery(discovery_url).get(key) or "")
    if not value:
        raise ValueError(f"OIDC discovery has no {key}")
    return value


def _signing_key(jwks_uri: str, kid: str):
    keys = _jwks.get(jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise ValueError("JWKS has no key list")
    for entry in keys:
        if isinstance(entry, dict) and entry.get("kid") == kid:
            return jwt.PyJWK(entry, algorithm="RS256").key
    raise ValueError(f"no JWKS key with kid={kid!r}")


def validate_id_token(*, discovery_url: str, client_id: str, id_token: str) -> Dict[str, Any]:
    """
    Verify an ID token and return its claims.

    Checks the RS256 signature against the issuer's JWKS, `iss`, `aud` and
    expiry. `email_verified`, when the provider sends it, must be true.
    """
    issuer = discovery_endpoint(discovery_url, "issuer")
    jwks_uri = discovery_endpoint(discovery_url, "jwks_uri")

    kid = jwt.get_unverified_header(id_token).get("kid")
    if not kid:
        raise ValueError("ID token header has no kid")

    claims = jwt.decode(
        id_token,
        key=_signing_key(jwks_uri, str(kid)),
        algorithms=["RS256"],
        audience=client_id,
        issuer=issuer,
        options={"require": ["exp", "iat", "iss", "aud"]},
    )
    if claims.get("email_verified", True) is not True:
        raise ValueError("ID token email is not verified")
    return claims
