from types import SimpleNamespace

import pytest

from circulation.library import Library


@pytest.fixture
def lib(tmp_path, request):
    # Create a unique database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def seeded(lib):
    """Category "Fiction", author "J. Doe", book "T" (2 copies) and three borrowers."""
    fiction = lib.catalog.add_category("Fiction", "Novels and short stories")
    doe = lib.catalog.add_author("J.", "Doe", 1970, "")
    book = lib.catalog.add_book("T", "9780000000002", 2001, "Acme", 2, fiction, [doe])
    borrowers = [
        lib.borrowers.add_borrower("Xavier", "Xu", "1 Main St", "555-0101", "x@example.com"),
        lib.borrowers.add_borrower("Yara", "Young", "2 Main St", "555-0102", "y@example.com"),
        lib.borrowers.add_borrower("Zoe", "Zimmer", "3 Main St", "555-0103", "z@example.com"),
    ]
    return SimpleNamespace(category=fiction, author=doe, book=book, borrowers=borrowers)


def available_copies(lib, book_id):
    return lib.catalog.get_book(book_id).available_copies


def loan_count(lib, **where):
    clauses = " AND ".join(f"{column} = ?" for column in where) or "1 = 1"
    row = lib.db.query_one(f"SELECT COUNT(*) AS n FROM Reservations WHERE {clauses}",
                           *where.values())
    return row["n"]
