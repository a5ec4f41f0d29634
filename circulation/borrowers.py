import logging
from typing import List, Optional

from circulation.database import Database
from circulation.ledger import has_active_loans
from circulation.models import Borrower
from circulation.queries import like_pattern

logger = logging.getLogger(__name__)

_BORROWER_COLUMNS = "card_number, first_name, last_name, address, phone, email, registration_date"


class BorrowerRepository:
    """Owns borrower records. Email uniqueness is enforced by the storage layer."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add_borrower(self, first_name: str, last_name: str, address: str, phone: str,
                     email: str) -> int:
        """Register a borrower and return their card number."""
        card_number = self.db.insert(
            """
            INSERT INTO Borrowers (first_name, last_name, address, phone, email)
            VALUES (?, ?, ?, ?, ?)
            """,
            first_name, last_name, address, phone, email,
        )
        logger.info(f"Registered borrower {card_number} <{email}>")
        return card_number

    def update_borrower(self, card_number: int, first_name: str, last_name: str, address: str,
                        phone: str, email: str) -> bool:
        updated = self.db.execute(
            """
            UPDATE Borrowers
            SET first_name = ?, last_name = ?, address = ?, phone = ?, email = ?
            WHERE card_number = ?
            """,
            first_name, last_name, address, phone, email, card_number,
        )
        return updated > 0

    def delete_borrower(self, card_number: int) -> bool:
        """Delete a borrower and their returned-loan history.

        Returns False and changes nothing while the borrower has an active loan.
        """
        with self.db.transaction() as tx:
            if has_active_loans(tx, "borrower_id", card_number):
                logger.info(f"Refused to delete borrower {card_number}: active loans")
                return False
            tx.execute("DELETE FROM Reservations WHERE borrower_id = ?", card_number)
            deleted = tx.execute("DELETE FROM Borrowers WHERE card_number = ?", card_number)
        if deleted:
            logger.info(f"Deleted borrower {card_number}")
        return deleted > 0

    def get_borrower(self, card_number: int) -> Optional[Borrower]:
        row = self.db.query_one(
            f"SELECT {_BORROWER_COLUMNS} FROM Borrowers WHERE card_number = ?", card_number
        )
        return Borrower.from_row(row) if row else None

    def get_all_borrowers(self) -> List[Borrower]:
        rows = self.db.query_many(
            f"""
            SELECT {_BORROWER_COLUMNS} FROM Borrowers
            ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE, card_number
            """
        )
        return [Borrower.from_row(row) for row in rows]

    def search_borrowers(self, term: Optional[str]) -> List[Borrower]:
        """Borrowers whose name, email or phone contains ``term``."""
        if not term or not term.strip():
            return self.get_all_borrowers()
        pattern = like_pattern(term)
        rows = self.db.query_many(
            f"""
            SELECT {_BORROWER_COLUMNS} FROM Borrowers
            WHERE FOLD(first_name) LIKE ? ESCAPE '\\'
               OR FOLD(last_name) LIKE ? ESCAPE '\\'
               OR FOLD(email) LIKE ? ESCAPE '\\'
               OR FOLD(COALESCE(phone, '')) LIKE ? ESCAPE '\\'
            ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE, card_number
            """,
            pattern, pattern, pattern, pattern,
        )
        return [Borrower.from_row(row) for row in rows]
