import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import StorageError

logger = logging.getLogger(__name__)


class Database:
    """Handle on the SQLite store shared by every manager.

    A handle is created at process start (application lifespan or CLI
    command), passed to the components that need it and closed at shutdown.
    Connections are opened per operation and always closed afterwards.
    """

    def __init__(self, path: str, timeout: float = 5.0) -> None:
        self.path = path
        self.timeout = timeout
        self._closed = False

    # ------------------------- Connections ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageError("Database handle is closed.")
        # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only queries."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self._connect()
            yield conn
        except sqlite3.Error as exc:
            logger.exception(f"Database read failed on {self.path}")
            raise StorageError("Storage failure.") from exc
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write unit.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so the
        checks and the conditional updates issued inside the block run as one
        unit against concurrent writers. Any exception rolls everything back.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self._connect()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        except sqlite3.Error as exc:
            logger.exception(f"Database transaction failed on {self.path}")
            raise StorageError("Storage failure.") from exc
        finally:
            if conn is not None:
                conn.close()

    def ping(self) -> bool:
        """Cheap connectivity probe used by the health endpoint."""
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except StorageError:
            return False

    def close(self) -> None:
        self._closed = True
        logger.info(f"Database handle for {self.path} closed")

    # ------------------------- Schema ------------------------- #
    def create_tables(self) -> None:
        """Create the tables and indexes if they do not exist yet."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        with self.connection() as conn:
            # WAL lets readers proceed while a borrow/return transaction holds the write lock
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    password TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'pending'
                        CHECK(role IN ('pending', 'member', 'admin')),
                    wallet INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    category TEXT,
                    isbn TEXT,
                    publication_year INTEGER NOT NULL,
                    total_copies INTEGER NOT NULL,
                    available_copies INTEGER NOT NULL,
                    shelf_number TEXT,
                    image TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CHECK(available_copies >= 0 AND available_copies <= total_copies)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS borrows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    book_id INTEGER NOT NULL,
                    member_id INTEGER NOT NULL,
                    borrow_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    return_date TEXT,
                    status TEXT NOT NULL DEFAULT 'borrowed'
                        CHECK(status IN ('borrowed', 'returned')),
                    fine INTEGER NOT NULL DEFAULT 0,
                    -- borrow history is append-only; referenced books and users cannot be deleted
                    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE RESTRICT,
                    FOREIGN KEY (member_id) REFERENCES users(id) ON DELETE RESTRICT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_member_status ON borrows(member_id, status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_status ON borrows(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_book_status ON borrows(book_id, status)")

    def initialize(self) -> "Database":
        """Create the schema and return the handle, for one-line setup."""
        self.create_tables()
        logger.info(f"Database ready at {self.path}")
        return self
