from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol

from awesomemy.auth.models import PROVIDER_EMAIL_SLOTS, User
from awesomemy.auth.util import normalize_email
from awesomemy.errors import DatabaseUnavailable, UniqueConflict, UpstreamIdentityError

logger = logging.getLogger(__name__)


class UserRepository(Protocol):
    """
    User table access.

    `insert_with_email` raises UniqueConflict when the (provider, email) pair
    already exists; any other storage failure raises DatabaseUnavailable.
    """

    def get_by_email(self, provider: str, email: str) -> Optional[User]: ...

    def get_by_uuid(self, user_uuid: uuid.UUID) -> Optional[User]: ...

    def insert_with_email(self, provider: str, email: str) -> User: ...


class IdentityResolver:
    """Maps a (provider, verified email) pair onto exactly one internal user."""

    def __init__(self, users: UserRepository) -> None:
        self.users = users

    def resolve_or_create(self, provider: str, email: str) -> User:
        """
        Look the user up; create it on first contact.

        Concurrent first logins for the same identity race on the insert. The
        loser gets UniqueConflict from the store and re-reads the winner's row,
        so both callers return the same user and only one row exists.
        """
        if provider not in PROVIDER_EMAIL_SLOTS:
            raise ValueError(f"Unknown provider slot: {provider}")
        addr = normalize_email(email)
        if "@" not in addr:
            raise UpstreamIdentityError(f"{provider}: unusable email")

        user = self.users.get_by_email(provider, addr)
        if user is not None:
            return user

        try:
            user = self.users.insert_with_email(provider, addr)
            logger.info("Created user %s on first %s login", user.uuid, provider)
            return user
        except UniqueConflict:
            logger.info("Concurrent first login for %s identity; reusing existing row", provider)

        user = self.users.get_by_email(provider, addr)
        if user is None:
            # Conflict reported but the row is not visible: the store is inconsistent.
            raise DatabaseUnavailable(f"{provider}: user row missing after unique conflict")
        return user
