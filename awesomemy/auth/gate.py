from __future__ import annotations

import uuid
from typing import Optional, Protocol, TypeVar

from fastapi import Request

from awesomemy.auth.identity import UserRepository
from awesomemy.auth.models import User
from awesomemy.auth.session import KEY_USER_UUID, Session
from awesomemy.errors import InternalError, NotFound, Unauthorized


class OwnedResource(Protocol):
    user_id: int


R = TypeVar("R", bound=OwnedResource)


class AuthorizationGate:
    def __init__(self, users: UserRepository) -> None:
        self.users = users

    def authenticate(self, session: Session) -> User:
        """
        Resolve the session to a user.

        Missing, malformed and stale identifiers all raise the same Unauthorized
        so a caller cannot probe which identifiers exist.
        """
        raw = session.get_str(KEY_USER_UUID)
        if not raw:
            raise Unauthorized("anonymous session")
        try:
            user_uuid = uuid.UUID(raw)
        except ValueError:
            raise Unauthorized("malformed user:uuid in session") from None

        user = self.users.get_by_uuid(user_uuid)
        if user is None:
            raise Unauthorized(f"session references unknown user {user_uuid}")
        return user

    def authorize_ownership(self, user: User, resource: Optional[R]) -> R:
        """Return the resource when `user` owns it; NotFound otherwise (absent or foreign)."""
        if resource is None or resource.user_id != user.user_id:
            raise NotFound()
        return resource


def attach_user(request: Request, user: User) -> None:
    request.state.user = user


def current_user(request: Request) -> User:
    """Typed accessor for the user attached by the authentication middleware."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise Unauthorized("no user attached to request")
    if not isinstance(user, User):
        raise InternalError(f"request.state.user has unexpected type {type(user).__name__}")
    return user


def current_session(request: Request) -> Session:
    session = getattr(request.state, "session", None)
    if not isinstance(session, Session):
        raise InternalError("request has no loaded session")
    return session
