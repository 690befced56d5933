"""Authentication gate: password credentials, bearer tokens and role checks.

Tokens are HS256 JWTs carrying the user id (``sub``) and role. Every
operation in the managers starts with ``require_role`` so access rules live
next to the business logic rather than in HTTP middleware.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from .config import Settings
from .errors import AccessDeniedError, AuthenticationError
from .user import Role, User

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: int = 10) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    user_id: int
    role: Role


def require_role(principal: Optional[Principal], *roles: Role) -> Principal:
    if principal is None:
        raise AuthenticationError("Authentication required.")
    if principal.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        logger.warning(f"User {principal.user_id} with role {principal.role.value} denied (needs {allowed})")
        raise AccessDeniedError(f"This operation requires role: {allowed}.")
    return principal


def require_admin(principal: Optional[Principal]) -> Principal:
    return require_role(principal, Role.ADMIN)


def require_member(principal: Optional[Principal]) -> Principal:
    return require_role(principal, Role.MEMBER)


class AuthGate:
    """Issues and verifies bearer tokens."""

    def __init__(self, settings: Settings) -> None:
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.expiration = timedelta(minutes=settings.jwt_expiration_minutes)

    def issue_token(self, user: User, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "sub": str(user.id),
            "role": user.role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.expiration).timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthenticationError("Token is missing.")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            user_id = int(payload["sub"])
            role = Role(payload["role"])
        except (JWTError, KeyError, ValueError, TypeError) as exc:
            raise AuthenticationError("Token is invalid.") from exc
        return Principal(user_id=user_id, role=role)
