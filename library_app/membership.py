import logging
import sqlite3
from typing import List, Optional, Tuple

from .borrow import BorrowStatus
from .config import Settings
from .database import Database
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .security import AuthGate, Principal, hash_password, require_admin, require_member, verify_password
from .user import Role, User
from .validators import EmailValidator, PasswordValidator, TextValidator

logger = logging.getLogger(__name__)


class MembershipManager:
    """User registration, login, the approval workflow and admin user CRUD."""

    def __init__(self, database: Database, settings: Settings, gate: Optional[AuthGate] = None) -> None:
        self.db = database
        self.gate = gate or AuthGate(settings)
        self.bcrypt_rounds = settings.bcrypt_rounds
        self.password_min_length = settings.password_min_length

    # ------------------------- Helpers ------------------------- #
    def _fetch(self, user_id: int) -> User:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"User {user_id} not found.")
        return User.from_row(row)

    def _insert(self, name: str, email: str, password: str, role: Role) -> User:
        name = TextValidator.require(name, "name")
        email = EmailValidator.require(email)
        password = PasswordValidator.require(password, self.password_min_length)
        hashed = hash_password(password, self.bcrypt_rounds)
        with self.db.transaction() as conn:
            if conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone():
                raise ConflictError("Email is already registered.")
            cursor = conn.execute(
                "INSERT INTO users (name, email, password, role) VALUES (?, ?, ?, ?)",
                (name, email, hashed, role.value),
            )
            user_id = cursor.lastrowid
        logger.info(f"User {user_id} <{email}> created with role {role.value}")
        return self._fetch(user_id)

    def resolve_principal(self, principal: Principal) -> Principal:
        """Refresh a token's principal from the stored account.

        The role may have changed since the token was issued (approval,
        demotion), and the account may have been deleted.
        """
        try:
            user = self._fetch(principal.user_id)
        except NotFoundError as exc:
            raise AuthenticationError("Account no longer exists.") from exc
        return Principal(user_id=user.id, role=user.role)

    # ------------------------- Public flows ------------------------- #
    def signup(self, name: str, email: str, password: str) -> User:
        """Register a new account awaiting approval."""
        return self._insert(name, email, password, Role.PENDING)

    def login(self, email: str, password: str) -> Tuple[str, User]:
        email = EmailValidator.normalize(email)
        if not email or not password:
            raise ValidationError("email and password are required.")
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        if row is None:
            raise NotFoundError("User not found.")
        user = User.from_row(row)
        if not verify_password(password, user.password or ""):
            logger.warning(f"Failed login for user {user.id}")
            raise AuthenticationError("Wrong password.")
        return self.gate.issue_token(user), user

    def get_profile(self, principal: Principal) -> User:
        return self._fetch(principal.user_id)

    def wallet_balance(self, principal: Optional[Principal]) -> int:
        require_member(principal)
        return self._fetch(principal.user_id).wallet

    # ------------------------- Admin operations ------------------------- #
    def list_users(self, principal: Optional[Principal]) -> List[User]:
        require_admin(principal)
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id DESC").fetchall()
        return [User.from_row(row) for row in rows]

    def get_user(self, principal: Optional[Principal], user_id: int) -> User:
        require_admin(principal)
        return self._fetch(user_id)

    def approve_user(self, principal: Optional[Principal], user_id: int) -> User:
        """Promote a pending user to member."""
        require_admin(principal)
        with self.db.transaction() as conn:
            row = conn.execute("SELECT role FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"User {user_id} not found.")
            if row["role"] == Role.ADMIN.value:
                raise ConflictError("Admins cannot be approved as members.")
            conn.execute("UPDATE users SET role = ? WHERE id = ?", (Role.MEMBER.value, user_id))
        logger.info(f"User {user_id} approved by admin {principal.user_id}")
        return self._fetch(user_id)

    def create_user(self, principal: Optional[Principal], name: str, email: str, password: str,
                    role: Role = Role.MEMBER) -> User:
        require_admin(principal)
        return self._insert(name, email, password, Role(role))

    def update_user(self, principal: Optional[Principal], user_id: int, name: Optional[str] = None,
                    email: Optional[str] = None, role: Optional[Role] = None) -> User:
        require_admin(principal)
        changes = {}
        if name is not None:
            changes["name"] = TextValidator.require(name, "name")
        if email is not None:
            changes["email"] = EmailValidator.require(email)
        if role is not None:
            changes["role"] = Role(role).value
            if user_id == principal.user_id and changes["role"] != Role.ADMIN.value:
                raise ConflictError("Admins cannot change their own role.")
        if not changes:
            raise ValidationError("Nothing to update.")

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self.db.transaction() as conn:
            if conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFoundError(f"User {user_id} not found.")
            try:
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*changes.values(), user_id),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Email is already registered.") from exc
        logger.info(f"User {user_id} updated: {', '.join(changes)}")
        return self._fetch(user_id)

    def delete_user(self, principal: Optional[Principal], user_id: int) -> None:
        require_admin(principal)
        if user_id == principal.user_id:
            raise ConflictError("Admins cannot delete their own account.")
        with self.db.transaction() as conn:
            if conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFoundError(f"User {user_id} not found.")
            counts = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(status = ?), 0) AS open_count FROM borrows WHERE member_id = ?",
                (BorrowStatus.BORROWED.value, user_id),
            ).fetchone()
            if counts["open_count"]:
                raise ConflictError(f"User {user_id} still holds {counts['open_count']} borrowed books.")
            if counts["total"]:
                raise ConflictError(f"User {user_id} has borrow history and cannot be deleted.")
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        logger.info(f"User {user_id} deleted by admin {principal.user_id}")

    # ------------------------- Operator ------------------------- #
    def bootstrap_admin(self, name: str, email: str, password: str) -> User:
        """Create an admin account, or promote the existing account with this email.

        An existing account takes the given name and password as well, so the
        operator can always log in with what they just typed.
        """
        email = EmailValidator.require(email)
        with self.db.connection() as conn:
            row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        if row is None:
            return self._insert(name, email, password, Role.ADMIN)
        name = TextValidator.require(name, "name")
        password = PasswordValidator.require(password, self.password_min_length)
        hashed = hash_password(password, self.bcrypt_rounds)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE users SET name = ?, password = ?, role = ? WHERE id = ?",
                (name, hashed, Role.ADMIN.value, row["id"]),
            )
        logger.info(f"User {row['id']} promoted to admin with a new password")
        return self._fetch(row["id"])
