import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from circulation.config import settings
from circulation.database import Database, Session
from circulation.models import LOAN_ACTIVE, LOAN_RETURNED, Loan, LoanView
from circulation.queries import QueryFacade

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time in the same layout SQLite uses for CURRENT_TIMESTAMP."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def default_due_date(days: Optional[int] = None, start: Optional[date] = None) -> str:
    """ISO due date ``days`` after ``start`` (today by default)."""
    period = settings.loan_period_days if days is None else days
    return ((start or date.today()) + timedelta(days=period)).isoformat()


def has_active_loans(tx: Session, column: str, value: int) -> bool:
    """True if any active loan has ``column`` (book_id or borrower_id) equal to ``value``."""
    row = tx.query_one(
        f"SELECT 1 FROM Reservations WHERE {column} = ? AND status = ? LIMIT 1",
        value, LOAN_ACTIVE,
    )
    return row is not None


class CirculationLedger:
    """Owns loan records and the borrow / return transitions.

    A loan is ``active`` when created and becomes ``returned`` exactly once.
    Each transition runs in a single write transaction together with the
    matching change to the book's ``available_copies``.
    """

    def __init__(self, db: Database, queries: Optional[QueryFacade] = None) -> None:
        self.db = db
        self.queries = queries or QueryFacade(db)

    def borrow_book(self, book_id: int, borrower_id: int, due_date: Optional[str]) -> bool:
        """Check out one copy of a book.

        Returns False, changing nothing, if the book does not exist or has no
        copy available. An unknown borrower raises ConstraintViolationError and
        the transaction is rolled back.
        """
        return self.checkout(book_id, borrower_id, due_date) is not None

    def checkout(self, book_id: int, borrower_id: int, due_date: Optional[str]) -> Optional[int]:
        """Same as ``borrow_book`` but returns the new loan id, or None when refused."""
        with self.db.transaction() as tx:
            row = tx.query_one("SELECT available_copies FROM Books WHERE id = ?", book_id)
            if row is None or row["available_copies"] <= 0:
                logger.info(f"Book {book_id} is not available for borrower {borrower_id}")
                return None
            loan_id = tx.insert(
                """
                INSERT INTO Reservations (book_id, borrower_id, checkout_date, due_date, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                book_id, borrower_id, utc_timestamp(), due_date, LOAN_ACTIVE,
            )
            tx.execute(
                "UPDATE Books SET available_copies = available_copies - 1 WHERE id = ?", book_id
            )
        logger.info(f"Loan {loan_id}: book {book_id} borrowed by {borrower_id}, due {due_date}")
        return loan_id

    def borrow_books(self, book_ids: Iterable[int], borrower_id: int,
                     due_date: Optional[str]) -> Tuple[List[int], List[int]]:
        """Borrow several books for one borrower, each in its own transaction.

        Returns ``(borrowed, refused)`` lists of book ids.
        """
        borrowed: List[int] = []
        refused: List[int] = []
        for book_id in book_ids:
            if self.borrow_book(book_id, borrower_id, due_date):
                borrowed.append(book_id)
            else:
                refused.append(book_id)
        return borrowed, refused

    def return_book(self, loan_id: int) -> bool:
        """Close an active loan and put the copy back on the shelf.

        Returns False if the loan does not exist or was already returned.
        """
        with self.db.transaction() as tx:
            row = tx.query_one("SELECT book_id, status FROM Reservations WHERE id = ?", loan_id)
            if row is None or row["status"] != LOAN_ACTIVE:
                logger.info(f"Loan {loan_id} is not active; nothing to return")
                return False
            tx.execute(
                "UPDATE Reservations SET return_date = ?, status = ? WHERE id = ? AND status = ?",
                utc_timestamp(), LOAN_RETURNED, loan_id, LOAN_ACTIVE,
            )
            # Capped: a book whose total was lowered below its loans is already full
            tx.execute(
                """
                UPDATE Books SET available_copies = MIN(total_copies, available_copies + 1)
                WHERE id = ?
                """,
                row["book_id"],
            )
        logger.info(f"Loan {loan_id}: book {row['book_id']} returned")
        return True

    def return_books(self, loan_ids: Iterable[int]) -> Tuple[List[int], List[int]]:
        """Return several loans. Returns ``(returned, refused)`` lists of loan ids."""
        returned: List[int] = []
        refused: List[int] = []
        for loan_id in loan_ids:
            (returned if self.return_book(loan_id) else refused).append(loan_id)
        return returned, refused

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        row = self.db.query_one(
            """
            SELECT id, book_id, borrower_id, checkout_date, due_date, return_date, status
            FROM Reservations WHERE id = ?
            """,
            loan_id,
        )
        return Loan.from_row(row) if row else None

    def get_borrower_active_loans(self, borrower_id: int) -> List[LoanView]:
        return self.queries.borrower_loans(borrower_id, active_only=True)

    def get_borrower_history(self, borrower_id: int) -> List[LoanView]:
        """Every loan of the borrower, most recent checkout first."""
        return self.queries.borrower_loans(borrower_id)
