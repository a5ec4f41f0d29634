from circulation.database import Database
from circulation.library import Library


def test_data_survives_reopen(tmp_path):
    db_file = str(tmp_path / "library.db")
    with Library(db_file=db_file) as lib:
        category = lib.catalog.add_category("Poetry", "")
        lib.catalog.add_book("Leaves of Grass", None, 1855, "", 1, category, [])

    with Library(db_file=db_file) as lib:
        assert [b.title for b in lib.catalog.get_all_books()] == ["Leaves of Grass"]


def test_repositories_share_one_handle(lib):
    assert lib.catalog.db is lib.db
    assert lib.borrowers.db is lib.db
    assert lib.ledger.db is lib.db


def test_injected_database_is_used(tmp_path):
    db = Database(str(tmp_path / "shared.db"))
    lib = Library(db=db)
    try:
        assert lib.db is db
        assert lib.catalog.get_all_categories() == []
    finally:
        lib.close()


def test_scenario_across_repositories(seeded, lib):
    x = seeded.borrowers[0]
    assert lib.ledger.borrow_book(seeded.book, x, "2025-01-01")

    view = lib.queries.book_view(seeded.book)
    assert (view.category_name, view.authors, view.available_copies) == ("Fiction", "J. Doe", 1)

    assert lib.catalog.delete_book(seeded.book) is False
    loan = lib.ledger.get_borrower_active_loans(x)[0]
    assert lib.ledger.return_book(loan.id)
    assert lib.catalog.delete_book(seeded.book) is True
    assert lib.ledger.get_borrower_history(x) == []
