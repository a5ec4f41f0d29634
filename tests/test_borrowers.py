import threading

import pytest

from circulation.database import ConstraintViolationError
from conftest import available_copies, loan_count


def test_add_and_get_borrower(lib):
    card = lib.borrowers.add_borrower("Ada", "Lovelace", "12 St James's Sq", "555-0199",
                                      "ada@example.com")
    borrower = lib.borrowers.get_borrower(card)
    assert borrower.full_name == "Ada Lovelace"
    assert borrower.email == "ada@example.com"
    assert borrower.registration_date  # defaulted by the database


def test_duplicate_email_is_a_constraint_violation(lib):
    lib.borrowers.add_borrower("Ada", "Lovelace", "", "", "ada@example.com")
    with pytest.raises(ConstraintViolationError):
        lib.borrowers.add_borrower("Other", "Person", "", "", "ada@example.com")
    assert len(lib.borrowers.get_all_borrowers()) == 1


def test_update_borrower(lib):
    card = lib.borrowers.add_borrower("Ada", "Lovelace", "", "", "ada@example.com")
    assert lib.borrowers.update_borrower(card, "Ada", "King", "Ockham", "555", "ada@king.org")
    borrower = lib.borrowers.get_borrower(card)
    assert (borrower.last_name, borrower.address, borrower.email) == ("King", "Ockham",
                                                                      "ada@king.org")
    assert lib.borrowers.update_borrower(999, "A", "B", "", "", "c@d.ef") is False


def test_update_borrower_to_taken_email(lib):
    lib.borrowers.add_borrower("Ada", "Lovelace", "", "", "ada@example.com")
    card = lib.borrowers.add_borrower("Bob", "Babbage", "", "", "bob@example.com")
    with pytest.raises(ConstraintViolationError):
        lib.borrowers.update_borrower(card, "Bob", "Babbage", "", "", "ada@example.com")


def test_delete_borrower_blocked_by_active_loan(seeded, lib):
    x = seeded.borrowers[0]
    lib.ledger.borrow_book(seeded.book, x, "2025-01-01")

    assert lib.borrowers.delete_borrower(x) is False
    assert lib.borrowers.get_borrower(x) is not None
    assert loan_count(lib, borrower_id=x) == 1
    assert available_copies(lib, seeded.book) == 1


def test_delete_borrower_after_return(seeded, lib):
    x = seeded.borrowers[0]
    lib.ledger.borrow_book(seeded.book, x, "2025-01-01")
    lib.ledger.return_book(lib.ledger.get_borrower_active_loans(x)[0].id)

    assert lib.borrowers.delete_borrower(x) is True
    assert lib.borrowers.get_borrower(x) is None
    assert loan_count(lib, borrower_id=x) == 0
    assert available_copies(lib, seeded.book) == 2


def test_delete_missing_borrower(lib):
    assert lib.borrowers.delete_borrower(31337) is False


def test_search_borrowers(seeded, lib):
    assert [b.first_name for b in lib.borrowers.search_borrowers("young")] == ["Yara"]
    assert [b.first_name for b in lib.borrowers.search_borrowers("Z@EXAMPLE")] == ["Zoe"]
    assert [b.first_name for b in lib.borrowers.search_borrowers("555-0101")] == ["Xavier"]
    assert len(lib.borrowers.search_borrowers("")) == 3
    assert [b.last_name for b in lib.borrowers.get_all_borrowers()] == ["Xu", "Young", "Zimmer"]


def test_delete_borrower_racing_a_borrow(seeded, lib):
    for round_number in range(5):
        card = lib.borrowers.add_borrower("Racer", str(round_number), "", "",
                                          f"racer{round_number}@example.com")
        barrier = threading.Barrier(2)
        results = {}

        def delete():
            barrier.wait()
            results["deleted"] = lib.borrowers.delete_borrower(card)

        def borrow():
            barrier.wait()
            try:
                results["borrowed"] = lib.ledger.borrow_book(seeded.book, card, "2025-01-01")
            except ConstraintViolationError:
                # the borrower was already gone
                results["borrowed"] = False

        threads = [threading.Thread(target=delete), threading.Thread(target=borrow)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if results["deleted"]:
            assert results["borrowed"] is False
            assert lib.borrowers.get_borrower(card) is None
            assert loan_count(lib, borrower_id=card) == 0
        else:
            assert results["borrowed"] is True
            assert loan_count(lib, borrower_id=card, status="active") == 1
            loan = lib.ledger.get_borrower_active_loans(card)[0]
            lib.ledger.return_book(loan.id)
        assert available_copies(lib, seeded.book) == 2
