"""
PKCE (RFC 7636) helpers and the authorization-code exchange shared by all providers.
"""

from __future__ import annotations

import hashlib
from typing import Dict, Iterable, Optional
from urllib.parse import urlencode

import requests

from awesomemy.auth.models import AccessToken
from awesomemy.auth.util import b64url, random_token
from awesomemy.errors import InvalidGrant, UpstreamIdentityError


HTTP_TIMEOUT_SECONDS = 10


def generate_verifier() -> str:
    # 32 random bytes -> 43 base64url chars (the RFC 7636 minimum length).
    return random_token(32)


def pkce_challenge(verifier: str) -> str:
    """S256 challenge: BASE64URL(SHA256(ascii(verifier))) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def build_authorize_url(
    auth_endpoint: str,
    *,
    client_id: str,
    redirect_uri: Optional[str],
    scopes: Iterable[str],
    state: str,
    code_challenge: str,
    extra: Optional[Dict[str, str]] = None,
) -> str:
    params = {
        "client_id": client_id,
        "response_type": "code",
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    if extra:
        params.update(extra)
    return f"{auth_endpoint}?{urlencode(params)}"


def exchange_code(
    token_endpoint: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: Optional[str],
    code: str,
    code_verifier: str,
) -> AccessToken:
    """
    Exchange an authorization code + PKCE verifier for an access token.

    Provider rejection (4xx, or an `error` field in a 200 body as GitHub does)
    raises InvalidGrant. Transport failures and malformed responses raise
    UpstreamIdentityError. Never retried: codes are single-use.
    """
    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "code_verifier": code_verifier,
    }
    if redirect_uri:
        payload["redirect_uri"] = redirect_uri
    try:
        r = requests.post(
            token_endpoint,
            data=payload,
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise UpstreamIdentityError(f"Token endpoint unreachable: {e}") from e

    if 400 <= r.status_code < 500:
        # Avoid leaking sensitive info; include minimal context.
        raise InvalidGrant(f"Token exchange rejected (status={r.status_code})")
    if r.status_code >= 500:
        raise UpstreamIdentityError(f"Token endpoint failed (status={r.status_code})")

    try:
        data = r.json()
    except ValueError as e:
        raise UpstreamIdentityError("Token response is not JSON") from e
    if not isinstance(data, dict):
        raise UpstreamIdentityError("Invalid token response")
    if data.get("error"):
        raise InvalidGrant(f"Token exchange rejected (error={data.get('error')})")

    access_token = str(data.get("access_token") or "").strip()
    if not access_token:
        raise UpstreamIdentityError("Token response missing access_token")

    return AccessToken(
        access_token=access_token,
        token_type=str(data.get("token_type") or "bearer"),
        id_token=str(data.get("id_token") or "").strip() or None,
        scope=str(data.get("scope") or "").strip() or None,
    )
