from __future__ import annotations

import hmac
import logging
from typing import Tuple

from awesomemy.auth.identity import IdentityResolver
from awesomemy.auth.models import User
from awesomemy.auth.pkce import generate_verifier, pkce_challenge
from awesomemy.auth.providers import ProviderRegistry
from awesomemy.auth.session import (
    IDENTITY_KEYS,
    KEY_OAUTH2_STATE,
    KEY_OAUTH2_VERIFIER,
    KEY_USER_UUID,
    Session,
    SessionManager,
)
from awesomemy.auth.util import random_token
from awesomemy.errors import InvalidState, MissingCode, MissingVerifier

logger = logging.getLogger(__name__)


class AuthenticationFlow:
    """
    OAuth2 authorization-code + PKCE login.

    begin -> provider -> complete; logout. Provider specifics live behind the
    registry, so nothing here knows which provider it is talking to.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        providers: ProviderRegistry,
        identities: IdentityResolver,
        frontend_base_url: str,
    ) -> None:
        self.sessions = sessions
        self.providers = providers
        self.identities = identities
        self.frontend_base_url = frontend_base_url

    def begin_authorization(self, session: Session, provider: str) -> str:
        """Return the provider authorization URL; binds a fresh PKCE verifier to the session."""
        adapter = self.providers.get(provider)

        # Never carry a pre-authentication token across the login boundary.
        self.sessions.renew_token(session)

        verifier = generate_verifier()
        state = random_token(32)
        session.put(KEY_OAUTH2_VERIFIER, verifier)
        session.put(KEY_OAUTH2_STATE, state)

        return adapter.authorization_url(state, pkce_challenge(verifier))

    def complete_authorization(self, session: Session, provider: str, code: str, state: str = "") -> Tuple[User, str]:
        """
        Redeem the callback code and log the session in.

        Not idempotent: providers invalidate a code after one exchange, so a
        replay is rejected upstream and surfaces as InvalidGrant.
        """
        code = (code or "").strip()
        if not code:
            raise MissingCode()

        verifier = session.get_str(KEY_OAUTH2_VERIFIER)
        if not verifier:
            raise MissingVerifier()

        adapter = self.providers.get(provider)

        expected_state = session.get_str(KEY_OAUTH2_STATE)
        if expected_state and not hmac.compare_digest(expected_state, (state or "").strip()):
            raise InvalidState(f"{adapter.name}: state mismatch")

        token = adapter.exchange_code(code, verifier)
        email = adapter.fetch_verified_email(token)
        user = self.identities.resolve_or_create(adapter.name, email)

        # Second rotation: the authenticated session gets a token never seen anonymously.
        self.sessions.renew_token(session)
        session.pop(KEY_OAUTH2_VERIFIER)
        session.pop(KEY_OAUTH2_STATE)
        session.put(KEY_USER_UUID, str(user.uuid))

        logger.info("User %s logged in via %s", user.uuid, adapter.name)
        return user, self.frontend_base_url

    def logout(self, session: Session) -> None:
        self.sessions.renew_token(session)
        for key in IDENTITY_KEYS:
            session.pop(key)
