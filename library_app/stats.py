from datetime import datetime
from typing import Dict, Optional

from .borrow import BorrowStatus, format_timestamp
from .database import Database
from .security import Principal, require_admin
from .user import Role


class StatsService:
    """Read-only dashboard counters for admins."""

    def __init__(self, database: Database) -> None:
        self.db = database

    def _scalar(self, sql: str, params: tuple = ()) -> int:
        with self.db.connection() as conn:
            value = conn.execute(sql, params).fetchone()[0]
        return int(value or 0)

    def count_books(self, principal: Optional[Principal]) -> int:
        require_admin(principal)
        return self._scalar("SELECT COUNT(*) FROM books")

    def count_members(self, principal: Optional[Principal]) -> int:
        require_admin(principal)
        return self._scalar("SELECT COUNT(*) FROM users WHERE role = ?", (Role.MEMBER.value,))

    def count_open_borrows(self, principal: Optional[Principal]) -> int:
        require_admin(principal)
        return self._scalar("SELECT COUNT(*) FROM borrows WHERE status = ?", (BorrowStatus.BORROWED.value,))

    def summary(self, principal: Optional[Principal], now: Optional[datetime] = None) -> Dict[str, int]:
        require_admin(principal)
        now = now or datetime.now()
        start_of_today = format_timestamp(now.replace(hour=0, minute=0, second=0, microsecond=0))
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM books) AS books,
                    (SELECT COUNT(*) FROM users WHERE role = ?) AS members,
                    (SELECT COUNT(*) FROM users WHERE role = ?) AS pending_users,
                    (SELECT COUNT(*) FROM borrows WHERE status = ?) AS open_borrows,
                    (SELECT COUNT(*) FROM borrows WHERE status = ? AND due_date < ?) AS overdue_borrows,
                    (SELECT COALESCE(SUM(fine), 0) FROM borrows) AS total_fines
                """,
                (Role.MEMBER.value, Role.PENDING.value, BorrowStatus.BORROWED.value,
                 BorrowStatus.BORROWED.value, start_of_today),
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}
