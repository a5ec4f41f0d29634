import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from circulation.config import settings

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class CirculationError(Exception):
    """Base class for errors raised by the circulation engine."""


class PersistenceError(CirculationError):
    """The database could not be reached or the statement failed for IO reasons."""


class ConstraintViolationError(CirculationError):
    """A uniqueness, foreign-key or check constraint rejected the write."""


class TransactionAbortedError(CirculationError):
    """A nested transaction block failed, so the enclosing transaction was rolled back."""


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS Categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Authors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        birth_year INTEGER NOT NULL DEFAULT 0,
        biography TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Books (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        isbn TEXT UNIQUE,
        publication_year INTEGER,
        publisher TEXT,
        total_copies INTEGER NOT NULL CHECK (total_copies >= 1),
        available_copies INTEGER NOT NULL,
        category_id INTEGER REFERENCES Categories(id),
        CHECK (available_copies >= 0 AND available_copies <= total_copies)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS BookAuthors (
        book_id INTEGER NOT NULL REFERENCES Books(id),
        author_id INTEGER NOT NULL REFERENCES Authors(id),
        PRIMARY KEY (book_id, author_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Borrowers (
        card_number INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        address TEXT,
        phone TEXT,
        email TEXT NOT NULL UNIQUE,
        registration_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Reservations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        book_id INTEGER NOT NULL REFERENCES Books(id),
        borrower_id INTEGER NOT NULL REFERENCES Borrowers(card_number),
        checkout_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        due_date TEXT,
        return_date TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'returned'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_books_category_id ON Books(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_books_title ON Books(title)",
    "CREATE INDEX IF NOT EXISTS idx_book_authors_author_id ON BookAuthors(author_id)",
    "CREATE INDEX IF NOT EXISTS idx_reservations_book_status ON Reservations(book_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_reservations_borrower_status ON Reservations(borrower_id, status)",
]


def _run(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> sqlite3.Cursor:
    """Execute one statement, translating sqlite3 errors into the engine's taxonomy."""
    try:
        return conn.execute(sql, params)
    except sqlite3.IntegrityError as e:
        logger.warning(f"Constraint violation: {e}")
        raise ConstraintViolationError(str(e)) from e
    except sqlite3.Error as e:
        logger.error(f"Database error: {e}")
        raise PersistenceError(str(e)) from e


def _fold(value: Any) -> Any:
    """Unicode case folding for search; SQLite's LOWER only folds ASCII."""
    return value.casefold() if isinstance(value, str) else value


class Session:
    """Statement executor bound to the connection of one open transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        # Set when a nested block exits with an exception; the outer block then rolls back
        self.rollback_only = False

    def execute(self, sql: str, *params: Any) -> int:
        """Run a write statement and return the number of affected rows."""
        return _run(self._conn, sql, params).rowcount

    def insert(self, sql: str, *params: Any) -> int:
        """Run an INSERT and return the new row id."""
        return _run(self._conn, sql, params).lastrowid

    def query_one(self, sql: str, *params: Any) -> Optional[Row]:
        row = _run(self._conn, sql, params).fetchone()
        return dict(row) if row else None

    def query_many(self, sql: str, *params: Any) -> List[Row]:
        return [dict(row) for row in _run(self._conn, sql, params).fetchall()]


class Database:
    """Owned handle to the SQLite database, with a small connection pool.

    Reads may run on any pooled connection. Writes that must commit together go
    through ``transaction()``, which serializes writers with an in-process lock
    and ``BEGIN IMMEDIATE`` so that a guard check and the mutation it protects
    see the same state.
    """

    def __init__(self, db_file: Optional[str] = None, pool_size: Optional[int] = None,
                 timeout: Optional[float] = None) -> None:
        self.db_file = db_file or settings.database_file
        self.timeout = settings.database_timeout if timeout is None else timeout
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(
            maxsize=pool_size or settings.database_pool_size
        )
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._closed = False

    # ------------------------- Connections ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_file,
                timeout=self.timeout,
                isolation_level=None,  # transactions are opened explicitly
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.create_function("FOLD", 1, _fold, deterministic=True)
            conn.execute("PRAGMA foreign_keys = ON;")
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.execute("PRAGMA synchronous = NORMAL;")
        except sqlite3.Error as e:
            logger.error(f"Could not open database {self.db_file}: {e}")
            raise PersistenceError(str(e)) from e
        return conn

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise PersistenceError("Database handle is closed.")
        try:
            return self._pool.get_nowait()
        except queue.Empty:
            return self._connect()

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._closed:
            conn.close()
            return
        try:
            self._pool.put_nowait(conn)
        except queue.Full:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a pooled connection for the duration of the block."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def close(self) -> None:
        """Close every pooled connection. The handle cannot be used afterwards."""
        self._closed = True
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                break
            conn.close()

    # ------------------------- Statements ------------------------- #
    def execute(self, sql: str, *params: Any) -> int:
        with self.connection() as conn:
            return _run(conn, sql, params).rowcount

    def insert(self, sql: str, *params: Any) -> int:
        with self.connection() as conn:
            return _run(conn, sql, params).lastrowid

    def query_one(self, sql: str, *params: Any) -> Optional[Row]:
        with self.connection() as conn:
            row = _run(conn, sql, params).fetchone()
            return dict(row) if row else None

    def query_many(self, sql: str, *params: Any) -> List[Row]:
        with self.connection() as conn:
            return [dict(row) for row in _run(conn, sql, params).fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a write transaction; commit on success, roll back on any exception.

        A transaction opened while the same thread already holds one joins the
        outer transaction instead of starting a new one. If such a nested block
        raises, the whole transaction is rolled back even when the outer block
        catches the error: leaving the outer block then raises
        TransactionAbortedError instead of committing partial writes.
        """
        outer = getattr(self._local, "session", None)
        if outer is not None:
            try:
                yield outer
            except BaseException:
                outer.rollback_only = True
                raise
            return

        with self._write_lock:
            with self.connection() as conn:
                _run(conn, "BEGIN IMMEDIATE")
                session = Session(conn)
                self._local.session = session
                try:
                    yield session
                    if session.rollback_only:
                        logger.error("Nested transaction block failed; rolling back")
                        raise TransactionAbortedError(
                            "A nested transaction block failed; nothing was committed."
                        )
                    _run(conn, "COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                finally:
                    self._local.session = None

    # ------------------------- Schema ------------------------- #
    def create_tables(self) -> None:
        """Create the tables and indexes if they do not exist yet."""
        with self.transaction() as tx:
            for statement in SCHEMA:
                tx.execute(statement)
        logger.info(f"Database schema ready at {self.db_file}")
