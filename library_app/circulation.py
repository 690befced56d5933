"""Borrow lifecycle: lending, returning, due dates and late fines.

A borrow record only ever moves ``borrowed -> returned``. Both transitions
touch two rows (the borrow and its book, plus the member's wallet on a late
return), so each one runs inside a single ``BEGIN IMMEDIATE`` transaction and
guards its updates with a condition on the current row state. A concurrent
request for the last copy, or a second return of the same record, finds the
condition false and fails without changing anything.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .borrow import Borrow, BorrowStatus, format_timestamp
from .config import Settings
from .database import Database
from .errors import BorrowLimitExceededError, CapacityExceededError, ConflictError, NotFoundError
from .security import Principal, require_admin, require_member

logger = logging.getLogger(__name__)


class BorrowEngine:
    def __init__(self, database: Database, settings: Settings) -> None:
        self.db = database
        self.loan_period = timedelta(days=settings.loan_period_days)
        self.max_active_borrows = settings.max_active_borrows
        self.fine_per_day = settings.fine_per_day

    # ------------------------- Policy ------------------------- #
    def calculate_fine(self, due_date: datetime, returned_at: datetime) -> int:
        """Fine for whole calendar days strictly after the due date."""
        late_days = max(0, (returned_at.date() - due_date.date()).days)
        return late_days * self.fine_per_day

    # ------------------------- Transitions ------------------------- #
    def borrow_book(self, principal: Optional[Principal], book_id: int, now: Optional[datetime] = None) -> Borrow:
        require_member(principal)
        now = (now or datetime.now()).replace(microsecond=0)
        member_id = principal.user_id
        due_date = now + self.loan_period

        with self.db.transaction() as conn:
            book = conn.execute(
                "SELECT id, title, available_copies FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            if book is None:
                raise NotFoundError(f"Book {book_id} not found.")
            if book["available_copies"] <= 0:
                logger.warning(f"Member {member_id} asked for book {book_id} with no copies left")
                raise CapacityExceededError(f"No copies of {book['title']!r} are available.")

            open_borrows = conn.execute(
                "SELECT COUNT(*) FROM borrows WHERE member_id = ? AND status = ?",
                (member_id, BorrowStatus.BORROWED.value),
            ).fetchone()[0]
            if open_borrows >= self.max_active_borrows:
                logger.warning(f"Member {member_id} is at the borrow limit ({open_borrows})")
                raise BorrowLimitExceededError(
                    f"Members may hold at most {self.max_active_borrows} borrowed books at a time."
                )

            cursor = conn.execute(
                "UPDATE books SET available_copies = available_copies - 1 WHERE id = ? AND available_copies > 0",
                (book_id,),
            )
            if cursor.rowcount == 0:
                raise CapacityExceededError(f"No copies of {book['title']!r} are available.")

            cursor = conn.execute(
                """
                INSERT INTO borrows (book_id, member_id, borrow_date, due_date, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (book_id, member_id, format_timestamp(now), format_timestamp(due_date),
                 BorrowStatus.BORROWED.value),
            )
            borrow_id = cursor.lastrowid

        logger.info(f"Borrow {borrow_id}: member {member_id} took book {book_id}, due {format_timestamp(due_date)}")
        return Borrow(
            id=borrow_id,
            book_id=book_id,
            member_id=member_id,
            borrow_date=now,
            due_date=due_date,
        )

    def return_book(self, principal: Optional[Principal], borrow_id: int, now: Optional[datetime] = None) -> int:
        """Close a borrow, put the copy back and charge any late fine. Returns the fine."""
        require_admin(principal)
        now = (now or datetime.now()).replace(microsecond=0)

        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM borrows WHERE id = ?", (borrow_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Borrow {borrow_id} not found.")
            borrow = Borrow.from_row(row)
            if not borrow.is_open:
                logger.warning(f"Borrow {borrow_id} was already returned")
                raise ConflictError(f"Borrow {borrow_id} has already been returned.")

            fine = self.calculate_fine(borrow.due_date, now)
            cursor = conn.execute(
                "UPDATE borrows SET status = ?, return_date = ?, fine = ? WHERE id = ? AND status = ?",
                (BorrowStatus.RETURNED.value, format_timestamp(now), fine, borrow_id,
                 BorrowStatus.BORROWED.value),
            )
            if cursor.rowcount == 0:
                raise ConflictError(f"Borrow {borrow_id} has already been returned.")

            conn.execute(
                "UPDATE books SET available_copies = available_copies + 1 "
                "WHERE id = ? AND available_copies < total_copies",
                (borrow.book_id,),
            )
            if fine > 0:
                conn.execute("UPDATE users SET wallet = wallet - ? WHERE id = ?", (fine, borrow.member_id))

        logger.info(f"Borrow {borrow_id} returned, fine {fine} charged to member {borrow.member_id}")
        return fine

    # ------------------------- Listings ------------------------- #
    def list_member_borrows(self, principal: Optional[Principal]) -> List[Dict[str, Any]]:
        require_member(principal)
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT br.id, br.book_id, bk.title, br.borrow_date, br.due_date,
                       br.return_date, br.status, br.fine
                FROM borrows br
                JOIN books bk ON bk.id = br.book_id
                WHERE br.member_id = ?
                ORDER BY br.id DESC
                """,
                (principal.user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def _open_borrow_rows(self, conn, extra_where: str = "", params: tuple = ()) -> List[Dict[str, Any]]:
        rows = conn.execute(
            f"""
            SELECT br.id, br.book_id, bk.title, br.member_id, u.name AS member_name,
                   u.email AS member_email, br.borrow_date, br.due_date, br.status
            FROM borrows br
            JOIN books bk ON bk.id = br.book_id
            JOIN users u ON u.id = br.member_id
            WHERE br.status = ? {extra_where}
            ORDER BY br.due_date, br.id
            """,
            (BorrowStatus.BORROWED.value, *params),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_active_borrows(self, principal: Optional[Principal], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        require_admin(principal)
        now = now or datetime.now()
        with self.db.connection() as conn:
            rows = self._open_borrow_rows(conn)
        for row in rows:
            row["is_overdue"] = Borrow.from_row(row).is_overdue(now)
        return rows

    def list_overdue_borrows(self, principal: Optional[Principal], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        require_admin(principal)
        now = now or datetime.now()
        # due_date's calendar day before today; timestamps sort lexically
        start_of_today = format_timestamp(now.replace(hour=0, minute=0, second=0, microsecond=0))
        with self.db.connection() as conn:
            rows = self._open_borrow_rows(conn, "AND br.due_date < ?", (start_of_today,))
        for row in rows:
            row["is_overdue"] = True
        return rows

    def borrow_history(self, principal: Optional[Principal]) -> List[Dict[str, Any]]:
        require_admin(principal)
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT br.id, br.book_id, bk.title, br.member_id, u.name AS member_name,
                       u.email AS member_email, br.borrow_date, br.due_date,
                       br.return_date, br.fine
                FROM borrows br
                JOIN books bk ON bk.id = br.book_id
                JOIN users u ON u.id = br.member_id
                WHERE br.status = ?
                ORDER BY br.return_date DESC, br.id DESC
                """,
                (BorrowStatus.RETURNED.value,),
            ).fetchall()
        return [dict(row) for row in rows]
