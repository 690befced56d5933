from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from library_app.errors import AccessDeniedError, AuthenticationError
from library_app.security import (
    AuthGate,
    Principal,
    hash_password,
    require_admin,
    require_member,
    require_role,
    verify_password,
)
from library_app.user import Role, User


def test_password_hash_roundtrip():
    hashed = hash_password("correct horse", rounds=4)
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)
    assert not verify_password("correct horse", "not-a-bcrypt-hash")


def test_token_roundtrip(settings):
    gate = AuthGate(settings)
    user = User(id=7, name="Alice", email="alice@example.com", role=Role.MEMBER)

    principal = gate.authenticate(gate.issue_token(user))

    assert principal == Principal(user_id=7, role=Role.MEMBER)


def test_expired_token_rejected(settings):
    gate = AuthGate(settings)
    user = User(id=7, name="Alice", email="alice@example.com", role=Role.MEMBER)
    long_ago = datetime.now(timezone.utc) - timedelta(days=1)

    with pytest.raises(AuthenticationError):
        gate.authenticate(gate.issue_token(user, now=long_ago))


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
def test_malformed_tokens_rejected(settings, token):
    with pytest.raises(AuthenticationError):
        AuthGate(settings).authenticate(token)


def test_foreign_secret_and_bad_claims_rejected(settings):
    gate = AuthGate(settings)
    exp = int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())
    forged = jwt.encode({"sub": "1", "role": "admin", "exp": exp}, "other-secret", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        gate.authenticate(forged)

    unknown_role = jwt.encode({"sub": "1", "role": "wizard", "exp": exp}, settings.jwt_secret_key, algorithm="HS256")
    with pytest.raises(AuthenticationError):
        gate.authenticate(unknown_role)


def test_role_checks():
    admin = Principal(user_id=1, role=Role.ADMIN)
    member = Principal(user_id=2, role=Role.MEMBER)

    assert require_admin(admin) is admin
    assert require_member(member) is member
    assert require_role(member, Role.MEMBER, Role.ADMIN) is member
    with pytest.raises(AccessDeniedError):
        require_admin(member)
    with pytest.raises(AccessDeniedError):
        require_member(admin)
    with pytest.raises(AuthenticationError):
        require_member(None)
