from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT)


class BorrowStatus(str, Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"


class Borrow:
    """One lending of one copy. Moves from ``borrowed`` to ``returned`` exactly once."""

    def __init__(self, id: int | None, book_id: int, member_id: int, borrow_date: datetime,
                 due_date: datetime, return_date: datetime | None = None,
                 status: BorrowStatus = BorrowStatus.BORROWED, fine: int = 0) -> None:
        self.id = id
        self.book_id = book_id
        self.member_id = member_id
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.status = BorrowStatus(status)
        self.fine = fine

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"Borrow #{self.id} of book {self.book_id} by member {self.member_id} ({self.status.value})"

    @property
    def is_open(self) -> bool:
        return self.status == BorrowStatus.BORROWED

    def is_overdue(self, now: datetime) -> bool:
        """Open and the due date's calendar day is already behind us."""
        return self.is_open and now.date() > self.due_date.date()

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Borrow":
        data = dict(row)
        return Borrow(
            id=data["id"],
            book_id=data["book_id"],
            member_id=data["member_id"],
            borrow_date=parse_timestamp(data["borrow_date"]),
            due_date=parse_timestamp(data["due_date"]),
            return_date=parse_timestamp(data.get("return_date")),
            status=BorrowStatus(data["status"]),
            fine=data.get("fine") or 0,
        )
