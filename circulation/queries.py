"""Joined, read-only projections consumed by the API and CLI.

Books are joined to their category and authors with LEFT joins and folded
back to one entry per book, so a book without authors still shows up once
and a book with several authors is never repeated.
"""

from typing import Any, Dict, List, Optional

from circulation.database import Database, Row
from circulation.models import LOAN_ACTIVE, BookView, LoanView

_BOOK_VIEW_SQL = """
    SELECT b.id, b.title, b.isbn, b.publication_year, b.publisher,
           b.total_copies, b.available_copies, b.category_id,
           c.name AS category_name,
           a.first_name AS author_first_name, a.last_name AS author_last_name
    FROM Books b
    LEFT JOIN Categories c ON c.id = b.category_id
    LEFT JOIN BookAuthors ba ON ba.book_id = b.id
    LEFT JOIN Authors a ON a.id = ba.author_id
    {where}
    ORDER BY b.title COLLATE NOCASE, b.id,
             a.last_name COLLATE NOCASE, a.first_name COLLATE NOCASE
"""

_BOOK_SEARCH_WHERE = """
    WHERE FOLD(b.title) LIKE ? ESCAPE '\\'
       OR FOLD(COALESCE(b.isbn, '')) LIKE ? ESCAPE '\\'
       OR EXISTS (
            SELECT 1 FROM BookAuthors sba
            JOIN Authors sa ON sa.id = sba.author_id
            WHERE sba.book_id = b.id
              AND (FOLD(sa.first_name) LIKE ? ESCAPE '\\'
                   OR FOLD(sa.last_name) LIKE ? ESCAPE '\\')
       )
"""

_LOAN_VIEW_SQL = """
    SELECT r.id, r.book_id, r.borrower_id, r.checkout_date, r.due_date,
           r.return_date, r.status, b.title, b.isbn,
           a.first_name AS author_first_name, a.last_name AS author_last_name
    FROM Reservations r
    JOIN Books b ON b.id = r.book_id
    LEFT JOIN BookAuthors ba ON ba.book_id = b.id
    LEFT JOIN Authors a ON a.id = ba.author_id
    WHERE r.borrower_id = ? {status_filter}
    ORDER BY r.checkout_date DESC, r.id DESC,
             a.last_name COLLATE NOCASE, a.first_name COLLATE NOCASE
"""


def like_pattern(term: str) -> str:
    """Build a case-insensitive substring pattern that matches ``term`` literally."""
    escaped = (
        term.strip().casefold()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def _author_name(row: Row) -> Optional[str]:
    if row.get("author_first_name") is None:
        return None
    return f"{row['author_first_name']} {row['author_last_name']}"


def _fold_books(rows: List[Row]) -> List[BookView]:
    views: Dict[int, BookView] = {}
    names: Dict[int, List[str]] = {}
    for row in rows:
        book_id = int(row["id"])
        if book_id not in views:
            views[book_id] = BookView(
                id=book_id,
                title=row["title"],
                isbn=row.get("isbn"),
                publication_year=row.get("publication_year"),
                publisher=row.get("publisher") or "",
                total_copies=int(row["total_copies"]),
                available_copies=int(row["available_copies"]),
                category_id=row.get("category_id"),
                category_name=row.get("category_name") or "",
                authors="",
            )
            names[book_id] = []
        name = _author_name(row)
        if name:
            names[book_id].append(name)
    for book_id, view in views.items():
        view.authors = ", ".join(names[book_id])
    return list(views.values())


def _fold_loans(rows: List[Row]) -> List[LoanView]:
    views: Dict[int, LoanView] = {}
    names: Dict[int, List[str]] = {}
    for row in rows:
        loan_id = int(row["id"])
        if loan_id not in views:
            views[loan_id] = LoanView(
                id=loan_id,
                book_id=int(row["book_id"]),
                borrower_id=int(row["borrower_id"]),
                title=row["title"],
                isbn=row.get("isbn"),
                authors="",
                checkout_date=row.get("checkout_date") or "",
                due_date=row.get("due_date"),
                return_date=row.get("return_date"),
                status=row["status"],
            )
            names[loan_id] = []
        name = _author_name(row)
        if name:
            names[loan_id].append(name)
    for loan_id, view in views.items():
        view.authors = ", ".join(names[loan_id])
    return list(views.values())


class QueryFacade:
    """Read views over the catalog and the loan ledger. Performs no mutation."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def all_books(self) -> List[BookView]:
        return _fold_books(self.db.query_many(_BOOK_VIEW_SQL.format(where="")))

    def search_books(self, term: Optional[str]) -> List[BookView]:
        """Books whose title, ISBN or any author's first/last name contains ``term``."""
        if not term or not term.strip():
            return self.all_books()
        pattern = like_pattern(term)
        sql = _BOOK_VIEW_SQL.format(where=_BOOK_SEARCH_WHERE)
        return _fold_books(self.db.query_many(sql, pattern, pattern, pattern, pattern))

    def book_view(self, book_id: int) -> Optional[BookView]:
        rows = self.db.query_many(_BOOK_VIEW_SQL.format(where="WHERE b.id = ?"), book_id)
        views = _fold_books(rows)
        return views[0] if views else None

    def borrower_loans(self, borrower_id: int, active_only: bool = False) -> List[LoanView]:
        """Loans of one borrower, most recent checkout first."""
        params: List[Any] = [borrower_id]
        status_filter = ""
        if active_only:
            status_filter = "AND r.status = ?"
            params.append(LOAN_ACTIVE)
        sql = _LOAN_VIEW_SQL.format(status_filter=status_filter)
        return _fold_loans(self.db.query_many(sql, *params))
