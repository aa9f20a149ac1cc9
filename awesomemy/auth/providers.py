"""
OAuth2 provider adapters.

Each adapter owns its provider's endpoints and its notion of a "verified
primary" email. The authentication flow only ever talks to the
`ProviderAdapter` interface through a `ProviderRegistry`; adding a provider
means adding an adapter here and registering it in `build_registry`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import jwt  # PyJWT
import requests

from awesomemy.auth import oidc
from awesomemy.auth.config import AuthConfig, ProviderCredentials
from awesomemy.auth.models import AccessToken
from awesomemy.auth.pkce import HTTP_TIMEOUT_SECONDS, build_authorize_url, exchange_code
from awesomemy.auth.util import normalize_email
from awesomemy.errors import UnsupportedProvider, UpstreamIdentityError

logger = logging.getLogger(__name__)


class ProviderAdapter(Protocol):
    name: str

    def authorization_url(self, state: str, challenge: str) -> str:
        """Return the provider URL the client is redirected to."""

    def exchange_code(self, code: str, verifier: str) -> AccessToken:
        """Redeem a one-time code. Raises InvalidGrant when the provider rejects it."""

    def fetch_verified_email(self, token: AccessToken) -> str:
        """Return the account's verified primary email. Raises UpstreamIdentityError."""


@dataclass
class OAuth2Provider(ABC):
    """OAuth2 authorization-code + PKCE provider; subclasses supply the email lookup."""

    name: str
    credentials: ProviderCredentials
    authorize_endpoint: str
    token_endpoint: str
    scopes: List[str]
    redirect_uri: Optional[str] = None
    extra_authorize_params: Dict[str, str] = field(default_factory=dict)

    def authorization_url(self, state: str, challenge: str) -> str:
        return self._authorize_url(self.authorize_endpoint, state, challenge)

    def exchange_code(self, code: str, verifier: str) -> AccessToken:
        return self._exchange(self.token_endpoint, code, verifier)

    @abstractmethod
    def fetch_verified_email(self, token: AccessToken) -> str: ...

    def _authorize_url(self, endpoint: str, state: str, challenge: str) -> str:
        return build_authorize_url(
            endpoint,
            client_id=self.credentials.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=state,
            code_challenge=challenge,
            extra=self.extra_authorize_params,
        )

    def _exchange(self, endpoint: str, code: str, verifier: str) -> AccessToken:
        return exchange_code(
            endpoint,
            client_id=self.credentials.client_id,
            client_secret=self.credentials.client_secret,
            redirect_uri=self.redirect_uri,
            code=code,
            code_verifier=verifier,
        )

    def _get_json(self, url: str, *, headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, str]] = None):
        try:
            r = requests.get(url, headers=headers, params=params, timeout=HTTP_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise UpstreamIdentityError(f"{self.name}: identity endpoint unreachable: {e}") from e
        if r.status_code >= 400:
            raise UpstreamIdentityError(f"{self.name}: identity endpoint failed (status={r.status_code})")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamIdentityError(f"{self.name}: identity response is not JSON") from e


class GitHubProvider(OAuth2Provider):
    """GitHub: pick the entry flagged primary (and verified) from the account's email list."""

    EMAILS_URL = "https://api.github.com/user/emails"

    def __init__(self, credentials: ProviderCredentials, *, redirect_uri: Optional[str] = None) -> None:
        super().__init__(
            name="github",
            credentials=credentials,
            authorize_endpoint="https://github.com/login/oauth/authorize",
            token_endpoint="https://github.com/login/oauth/access_token",
            scopes=["read:user", "user:email"],
            redirect_uri=redirect_uri,
        )

    def fetch_verified_email(self, token: AccessToken) -> str:
        emails = self._get_json(
            self.EMAILS_URL,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        if not isinstance(emails, list):
            raise UpstreamIdentityError("github: unexpected /user/emails payload")

        for entry in emails:
            if not isinstance(entry, dict):
                continue
            if entry.get("primary") is True and entry.get("verified") is True:
                email = normalize_email(entry.get("email"))
                if "@" in email:
                    return email
        raise UpstreamIdentityError("github: account has no verified primary email")


class GoogleProvider(OAuth2Provider):
    """Google: read the single email + email_verified pair from the token-info endpoint."""

    TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"

    def __init__(self, credentials: ProviderCredentials, *, redirect_uri: Optional[str] = None) -> None:
        super().__init__(
            name="google",
            credentials=credentials,
            authorize_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
            token_endpoint="https://oauth2.googleapis.com/token",
            scopes=["openid", "email"],
            redirect_uri=redirect_uri,
        )

    def fetch_verified_email(self, token: AccessToken) -> str:
        info = self._get_json(self.TOKENINFO_URL, params={"access_token": token.access_token})
        if not isinstance(info, dict):
            raise UpstreamIdentityError("google: unexpected tokeninfo payload")

        # tokeninfo returns email_verified as the string "true".
        verified = str(info.get("email_verified") or "").strip().lower() == "true"
        email = normalize_email(info.get("email"))
        if not verified or "@" not in email:
            raise UpstreamIdentityError("google: token has no verified email")
        return email


class OIDCProvider(OAuth2Provider):
    """Generic OIDC: endpoints come from discovery, email from a validated ID token."""

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        discovery_url: str,
        redirect_uri: Optional[str] = None,
    ) -> None:
        super().__init__(
            name="oidc",
            credentials=credentials,
            authorize_endpoint="",
            token_endpoint="",
            scopes=["openid", "email", "profile"],
            redirect_uri=redirect_uri,
        )
        self.discovery_url = discovery_url

    def _endpoint(self, key: str) -> str:
        try:
            return oidc.discovery_endpoint(self.discovery_url, key)
        except (requests.RequestException, ValueError) as e:
            raise UpstreamIdentityError(f"oidc: discovery failed: {e}") from e

    def authorization_url(self, state: str, challenge: str) -> str:
        return self._authorize_url(self._endpoint("authorization_endpoint"), state, challenge)

    def exchange_code(self, code: str, verifier: str) -> AccessToken:
        return self._exchange(self._endpoint("token_endpoint"), code, verifier)

    def fetch_verified_email(self, token: AccessToken) -> str:
        if not token.id_token:
            raise UpstreamIdentityError("oidc: token response missing id_token")
        try:
            claims = oidc.validate_id_token(
                discovery_url=self.discovery_url,
                client_id=self.credentials.client_id,
                id_token=token.id_token,
            )
        except (jwt.PyJWTError, requests.RequestException, ValueError) as e:
            raise UpstreamIdentityError(f"oidc: id_token rejected: {e}") from e

        email = normalize_email(claims.get("email"))
        if "@" not in email:
            raise UpstreamIdentityError("oidc: id_token has no email claim")
        return email


class ProviderRegistry:
    """Adapters keyed by provider identifier (the `{provider}` path segment)."""

    def __init__(self, adapters: Optional[List[ProviderAdapter]] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}
        for a in adapters or []:
            self.register(a)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> ProviderAdapter:
        adapter = self._adapters.get((name or "").strip().lower())
        if adapter is None:
            raise UnsupportedProvider(f"provider not configured: {name!r}")
        return adapter

    def names(self) -> List[str]:
        return sorted(self._adapters)


def callback_url(cfg: AuthConfig, provider: str) -> Optional[str]:
    if not cfg.public_base_url:
        return None
    return f"{cfg.public_base_url}/auth/oauth2/{provider}/callback"


def build_registry(cfg: AuthConfig) -> ProviderRegistry:
    registry = ProviderRegistry()
    if cfg.github:
        registry.register(GitHubProvider(cfg.github, redirect_uri=callback_url(cfg, "github")))
    if cfg.google:
        registry.register(GoogleProvider(cfg.google, redirect_uri=callback_url(cfg, "google")))
    if cfg.oidc and cfg.oidc_discovery_url:
        registry.register(
            OIDCProvider(cfg.oidc, discovery_url=cfg.oidc_discovery_url, redirect_uri=callback_url(cfg, "oidc"))
        )
    logger.info("OAuth2 providers enabled: %s", ", ".join(registry.names()) or "none")
    return registry
