import logging
from typing import Any, Dict, List, Optional

from .book import Book
from .borrow import BorrowStatus
from .config import Settings
from .database import Database
from .errors import ConflictError, NotFoundError, ValidationError
from .security import Principal, require_admin, require_role
from .user import Role
from .validators import NumberValidator, TextValidator

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "author", "category", "isbn", "publication_year", "shelf_number", "image")


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CatalogManager:
    """Manages the book catalog and its copy bookkeeping."""

    def __init__(self, database: Database, settings: Settings) -> None:
        self.db = database
        self.search_min_length = settings.search_min_length
        self.search_limit = settings.search_limit

    # ------------------------- Queries ------------------------- #
    def list_books(self) -> List[Book]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY id DESC").fetchall()
        return [Book.from_row(row) for row in rows]

    def get_book(self, book_id: int) -> Book:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Book {book_id} not found.")
        return Book.from_row(row)

    def search_books(self, principal: Optional[Principal], query: Optional[str]) -> List[Book]:
        """Substring match on title, author or isbn; short queries return nothing."""
        require_role(principal, Role.PENDING, Role.MEMBER, Role.ADMIN)
        q = (query or "").strip()
        if len(q) < self.search_min_length:
            return []
        pattern = _like_pattern(q)
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM books
                WHERE title LIKE ? ESCAPE '\\' OR author LIKE ? ESCAPE '\\' OR isbn LIKE ? ESCAPE '\\'
                ORDER BY id
                LIMIT ?
                """,
                (pattern, pattern, pattern, self.search_limit),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    # ------------------------- Mutations ------------------------- #
    def add_book(self, principal: Optional[Principal], *, title: str, author: str,
                 publication_year: int, total_copies: int, category: Optional[str] = None,
                 isbn: Optional[str] = None, shelf_number: Optional[str] = None,
                 image: Optional[str] = None) -> Book:
        require_admin(principal)
        book = Book(
            id=None,
            title=TextValidator.require(title, "title"),
            author=TextValidator.require(author, "author"),
            publication_year=NumberValidator.publication_year(publication_year),
            total_copies=NumberValidator.copies(total_copies),
            category=TextValidator.optional(category),
            isbn=TextValidator.optional(isbn),
            shelf_number=TextValidator.optional(shelf_number),
            image=TextValidator.optional(image),
        )
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, category, isbn, publication_year,
                                   total_copies, available_copies, shelf_number, image)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (book.title, book.author, book.category, book.isbn, book.publication_year,
                 book.total_copies, book.available_copies, book.shelf_number, book.image),
            )
            book.id = cursor.lastrowid
        logger.info(f"Book {book.id} added: {book.title!r} ({book.total_copies} copies)")
        return self.get_book(book.id)

    def update_book(self, principal: Optional[Principal], book_id: int, **fields: Any) -> Book:
        """Update the given fields of a book.

        A new ``total_copies`` keeps the number of lent-out copies fixed:
        ``available = new_total - (old_total - old_available)``. The edit is
        rejected without any change when that would go negative.
        """
        require_admin(principal)
        unknown = set(fields) - set(_UPDATABLE_FIELDS) - {"total_copies"}
        if unknown:
            raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}.")

        changes: Dict[str, Any] = {}
        for name in _UPDATABLE_FIELDS:
            value = fields.get(name)
            if value is None:
                continue
            if name in ("title", "author"):
                changes[name] = TextValidator.require(value, name)
            elif name == "publication_year":
                changes[name] = NumberValidator.publication_year(value)
            else:
                changes[name] = TextValidator.optional(value)
        new_total = fields.get("total_copies")
        if new_total is not None:
            NumberValidator.copies(new_total)
        if not changes and new_total is None:
            raise ValidationError("Nothing to update.")

        assignments = [f"{name} = ?" for name in changes]
        params: List[Any] = list(changes.values())
        where = "WHERE id = ?"
        where_params: List[Any] = [book_id]
        if new_total is not None:
            # SET expressions read the pre-update row, so both columns use the old counts
            assignments.append("available_copies = ? - (total_copies - available_copies)")
            assignments.append("total_copies = ?")
            params.extend([new_total, new_total])
            where += " AND ? - (total_copies - available_copies) >= 0"
            where_params.append(new_total)

        with self.db.transaction() as conn:
            current = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            if current is None:
                raise NotFoundError(f"Book {book_id} not found.")
            cursor = conn.execute(
                f"UPDATE books SET {', '.join(assignments)} {where}",
                params + where_params,
            )
            if cursor.rowcount == 0:
                lent_out = Book.from_row(current).lent_out
                logger.warning(f"Rejected copy change on book {book_id}: {new_total} < {lent_out} lent out")
                raise ConflictError(
                    f"total_copies cannot be lower than the {lent_out} copies currently lent out."
                )
        changed = list(changes)
        if new_total is not None:
            changed.append("total_copies")
        logger.info(f"Book {book_id} updated: {', '.join(changed)}")
        return self.get_book(book_id)

    def remove_book(self, principal: Optional[Principal], book_id: int) -> None:
        require_admin(principal)
        with self.db.transaction() as conn:
            row = conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Book {book_id} not found.")
            counts = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(status = ?), 0) AS open_count FROM borrows WHERE book_id = ?",
                (BorrowStatus.BORROWED.value, book_id),
            ).fetchone()
            if counts["open_count"]:
                raise ConflictError(f"Book {book_id} has {counts['open_count']} copies lent out and cannot be deleted.")
            if counts["total"]:
                raise ConflictError(f"Book {book_id} has borrow history and cannot be deleted.")
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        logger.info(f"Book {book_id} removed")
