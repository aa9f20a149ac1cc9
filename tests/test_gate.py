from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest

from awesomemy.auth.gate import AuthorizationGate, attach_user, current_user
from awesomemy.auth.session import KEY_USER_UUID, Session, utcnow
from awesomemy.errors import InternalError, NotFound, Unauthorized
from awesomemy.resources import PROJECTS


def _session(**values) -> Session:
    return Session(token="t", expires_at=utcnow(), values=dict(values))


def test_authenticate_resolves_session_user(users) -> None:
    user = users.insert_with_email("github", "octo@example.com")
    gate = AuthorizationGate(users)
    assert gate.authenticate(_session(**{KEY_USER_UUID: str(user.uuid)})) == user


@pytest.mark.parametrize(
    "values",
    [
        {},
        {KEY_USER_UUID: ""},
        {KEY_USER_UUID: "not-a-uuid"},
        {KEY_USER_UUID: str(uuid.uuid4())},
        {KEY_USER_UUID: 12345},
    ],
)
def test_authenticate_failures_are_all_unauthorized(users, values) -> None:
    with pytest.raises(Unauthorized):
        AuthorizationGate(users).authenticate(_session(**values))


def test_ownership_hides_foreign_resources(users, resources) -> None:
    alice = users.insert_with_email("github", "alice@example.com")
    bob = users.insert_with_email("github", "bob@example.com")
    gate = AuthorizationGate(users)
    owned = resources.add(PROJECTS, alice.user_id, name="Alice's project", description="described enough")

    assert gate.authorize_ownership(alice, owned) is owned
    with pytest.raises(NotFound):
        gate.authorize_ownership(bob, owned)
    with pytest.raises(NotFound):
        gate.authorize_ownership(bob, None)


def test_current_user_accessor(users) -> None:
    request = MagicMock()
    request.state = MagicMock(spec=[])
    with pytest.raises(Unauthorized):
        current_user(request)

    user = users.insert_with_email("google", "g@example.com")
    attach_user(request, user)
    assert current_user(request) is user

    request.state.user = {"uuid": "spoofed"}
    with pytest.raises(InternalError):
        current_user(request)
