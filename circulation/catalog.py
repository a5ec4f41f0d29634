import logging
from typing import Iterable, List, Optional

from circulation.database import Database, Session
from circulation.ledger import has_active_loans
from circulation.models import Author, Book, BookView, Category
from circulation.queries import QueryFacade, like_pattern

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = (
    "id, title, isbn, publication_year, publisher, "
    "total_copies, available_copies, category_id"
)


class CatalogRepository:
    """Owns Books, Authors, Categories and the Book-Author association.

    Inputs are trusted: required-field validation belongs to the caller
    boundary (see ``circulation.validators``). Storage constraints still
    reject duplicate ISBNs, unknown foreign keys and ``total_copies < 1``.
    """

    def __init__(self, db: Database, queries: Optional[QueryFacade] = None) -> None:
        self.db = db
        self.queries = queries or QueryFacade(db)

    # ------------------------- Books ------------------------- #
    def add_book(self, title: str, isbn: Optional[str], year: Optional[int], publisher: str,
                 total_copies: int, category_id: Optional[int], author_ids: Iterable[int]) -> int:
        """Insert a book with every copy available and link its authors."""
        with self.db.transaction() as tx:
            book_id = tx.insert(
                """
                INSERT INTO Books (title, isbn, publication_year, publisher,
                                   total_copies, available_copies, category_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                title, isbn, year, publisher, total_copies, total_copies, category_id,
            )
            self._insert_authors(tx, book_id, author_ids)
        logger.info(f"Added book {book_id} '{title}' ({total_copies} copies)")
        return book_id

    def update_book(self, book_id: int, title: str, isbn: Optional[str], year: Optional[int],
                    publisher: str, total_copies: int, category_id: Optional[int],
                    author_ids: Iterable[int]) -> bool:
        """Update a book, keeping the number of copies currently on loan.

        ``available_copies`` becomes ``max(0, total_copies - borrowed)``. When
        the new total is below what is on loan, availability is clamped to zero
        instead of the edit being refused.

        A non-empty ``author_ids`` replaces the whole author set. An empty one
        leaves the authors unchanged; it never removes them.

        Returns False if the book does not exist.
        """
        author_ids = list(author_ids)
        with self.db.transaction() as tx:
            row = tx.query_one(f"SELECT {_BOOK_COLUMNS} FROM Books WHERE id = ?", book_id)
            if row is None:
                return False
            borrowed = Book.from_row(row).borrowed_copies
            available = max(0, total_copies - borrowed)
            tx.execute(
                """
                UPDATE Books
                SET title = ?, isbn = ?, publication_year = ?, publisher = ?,
                    total_copies = ?, available_copies = ?, category_id = ?
                WHERE id = ?
                """,
                title, isbn, year, publisher, total_copies, available, category_id, book_id,
            )
            if author_ids:
                tx.execute("DELETE FROM BookAuthors WHERE book_id = ?", book_id)
                self._insert_authors(tx, book_id, author_ids)
        if total_copies < borrowed:
            logger.warning(
                f"Book {book_id}: total copies lowered to {total_copies} "
                f"while {borrowed} are on loan; availability clamped to 0"
            )
        logger.info(f"Updated book {book_id}")
        return True

    def delete_book(self, book_id: int) -> bool:
        """Delete a book with its author links and loan history.

        Returns False and changes nothing while the book has an active loan.
        """
        with self.db.transaction() as tx:
            if has_active_loans(tx, "book_id", book_id):
                logger.info(f"Refused to delete book {book_id}: it has active loans")
                return False
            tx.execute("DELETE FROM BookAuthors WHERE book_id = ?", book_id)
            tx.execute("DELETE FROM Reservations WHERE book_id = ?", book_id)
            deleted = tx.execute("DELETE FROM Books WHERE id = ?", book_id)
        if deleted:
            logger.info(f"Deleted book {book_id}")
        return deleted > 0

    def get_book(self, book_id: int) -> Optional[Book]:
        row = self.db.query_one(f"SELECT {_BOOK_COLUMNS} FROM Books WHERE id = ?", book_id)
        return Book.from_row(row) if row else None

    def get_book_author_ids(self, book_id: int) -> List[int]:
        rows = self.db.query_many(
            "SELECT author_id FROM BookAuthors WHERE book_id = ? ORDER BY author_id", book_id
        )
        return [int(row["author_id"]) for row in rows]

    def get_all_books(self) -> List[BookView]:
        return self.queries.all_books()

    def search_books(self, term: Optional[str]) -> List[BookView]:
        return self.queries.search_books(term)

    @staticmethod
    def _insert_authors(tx: Session, book_id: int, author_ids: Iterable[int]) -> None:
        for author_id in dict.fromkeys(author_ids):
            tx.execute(
                "INSERT INTO BookAuthors (book_id, author_id) VALUES (?, ?)", book_id, author_id
            )

    # ------------------------- Categories ------------------------- #
    def add_category(self, name: str, description: str = "") -> int:
        category_id = self.db.insert(
            "INSERT INTO Categories (name, description) VALUES (?, ?)", name, description
        )
        logger.info(f"Added category {category_id} '{name}'")
        return category_id

    def update_category(self, category_id: int, name: str, description: str = "") -> bool:
        updated = self.db.execute(
            "UPDATE Categories SET name = ?, description = ? WHERE id = ?",
            name, description, category_id,
        )
        return updated > 0

    def delete_category(self, category_id: int) -> bool:
        """Delete a category. Returns False while any book references it."""
        with self.db.transaction() as tx:
            if tx.query_one("SELECT 1 FROM Books WHERE category_id = ? LIMIT 1", category_id):
                logger.info(f"Refused to delete category {category_id}: books reference it")
                return False
            deleted = tx.execute("DELETE FROM Categories WHERE id = ?", category_id)
        return deleted > 0

    def get_category(self, category_id: int) -> Optional[Category]:
        row = self.db.query_one(
            "SELECT id, name, description FROM Categories WHERE id = ?", category_id
        )
        return Category.from_row(row) if row else None

    def get_all_categories(self) -> List[Category]:
        rows = self.db.query_many(
            "SELECT id, name, description FROM Categories ORDER BY name COLLATE NOCASE, id"
        )
        return [Category.from_row(row) for row in rows]

    def search_categories(self, term: Optional[str]) -> List[Category]:
        if not term or not term.strip():
            return self.get_all_categories()
        pattern = like_pattern(term)
        rows = self.db.query_many(
            """
            SELECT id, name, description FROM Categories
            WHERE FOLD(name) LIKE ? ESCAPE '\\'
               OR FOLD(COALESCE(description, '')) LIKE ? ESCAPE '\\'
            ORDER BY name COLLATE NOCASE, id
            """,
            pattern, pattern,
        )
        return [Category.from_row(row) for row in rows]

    # ------------------------- Authors ------------------------- #
    def add_author(self, first_name: str, last_name: str, birth_year: int = 0,
                   biography: str = "") -> int:
        author_id = self.db.insert(
            "INSERT INTO Authors (first_name, last_name, birth_year, biography) VALUES (?, ?, ?, ?)",
            first_name, last_name, birth_year or 0, biography,
        )
        logger.info(f"Added author {author_id} '{first_name} {last_name}'")
        return author_id

    def update_author(self, author_id: int, first_name: str, last_name: str,
                      birth_year: int = 0, biography: str = "") -> bool:
        updated = self.db.execute(
            """
            UPDATE Authors SET first_name = ?, last_name = ?, birth_year = ?, biography = ?
            WHERE id = ?
            """,
            first_name, last_name, birth_year or 0, biography, author_id,
        )
        return updated > 0

    def delete_author(self, author_id: int) -> bool:
        """Delete an author. Returns False while any book lists them."""
        with self.db.transaction() as tx:
            if tx.query_one("SELECT 1 FROM BookAuthors WHERE author_id = ? LIMIT 1", author_id):
                logger.info(f"Refused to delete author {author_id}: books reference them")
                return False
            deleted = tx.execute("DELETE FROM Authors WHERE id = ?", author_id)
        return deleted > 0

    def get_author(self, author_id: int) -> Optional[Author]:
        row = self.db.query_one(
            "SELECT id, first_name, last_name, birth_year, biography FROM Authors WHERE id = ?",
            author_id,
        )
        return Author.from_row(row) if row else None

    def get_all_authors(self) -> List[Author]:
        rows = self.db.query_many(
            """
            SELECT id, first_name, last_name, birth_year, biography FROM Authors
            ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE, id
            """
        )
        return [Author.from_row(row) for row in rows]

    def search_authors(self, term: Optional[str]) -> List[Author]:
        if not term or not term.strip():
            return self.get_all_authors()
        pattern = like_pattern(term)
        rows = self.db.query_many(
            """
            SELECT id, first_name, last_name, birth_year, biography FROM Authors
            WHERE FOLD(first_name) LIKE ? ESCAPE '\\' OR FOLD(last_name) LIKE ? ESCAPE '\\'
            ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE, id
            """,
            pattern, pattern,
        )
        return [Author.from_row(row) for row in rows]
