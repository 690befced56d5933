from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class Role(str, Enum):
    PENDING = "pending"
    MEMBER = "member"
    ADMIN = "admin"


class User:
    """A registered account. ``password`` holds the bcrypt hash, never the plain text."""

    def __init__(self, id: int | None, name: str, email: str, role: Role = Role.PENDING,
                 wallet: int = 0, password: str | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.role = Role(role)
        self.wallet = wallet
        self.password = password
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}> ({self.role.value})"

    def to_dict(self) -> dict:
        """Public summary; the credential is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "wallet": self.wallet,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "User":
        data = dict(row)
        created_at = data.get("created_at")
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            role=Role(data["role"]),
            wallet=data.get("wallet") or 0,
            password=data.get("password"),
            created_at=str(created_at) if created_at is not None else None,
        )
