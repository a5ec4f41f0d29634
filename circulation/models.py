from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

LOAN_ACTIVE = "active"
LOAN_RETURNED = "returned"


def _int_or_none(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _str_or_empty(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class Category:
    id: int
    name: str
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Category":
        return Category(
            id=int(row["id"]),
            name=row["name"],
            description=_str_or_empty(row.get("description")),
        )


@dataclass
class Author:
    id: int
    first_name: str
    last_name: str
    birth_year: int = 0  # 0 = unknown
    biography: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return self.full_name

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Author":
        return Author(
            id=int(row["id"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            birth_year=int(row.get("birth_year") or 0),
            biography=_str_or_empty(row.get("biography")),
        )


@dataclass
class Book:
    id: int
    title: str
    isbn: Optional[str]
    publication_year: Optional[int]
    publisher: str
    total_copies: int
    available_copies: int
    category_id: Optional[int]

    @property
    def borrowed_copies(self) -> int:
        return self.total_copies - self.available_copies

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Book":
        return Book(
            id=int(row["id"]),
            title=row["title"],
            isbn=row.get("isbn"),
            publication_year=_int_or_none(row.get("publication_year")),
            publisher=_str_or_empty(row.get("publisher")),
            total_copies=int(row["total_copies"]),
            available_copies=int(row["available_copies"]),
            category_id=_int_or_none(row.get("category_id")),
        )


@dataclass
class Borrower:
    card_number: int
    first_name: str
    last_name: str
    address: str
    phone: str
    email: str
    registration_date: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Borrower":
        return Borrower(
            card_number=int(row["card_number"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            address=_str_or_empty(row.get("address")),
            phone=_str_or_empty(row.get("phone")),
            email=row["email"],
            registration_date=_str_or_empty(row.get("registration_date")),
        )


@dataclass
class Loan:
    id: int
    book_id: int
    borrower_id: int
    checkout_date: str
    due_date: Optional[str]
    return_date: Optional[str]
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == LOAN_ACTIVE

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Loan":
        return Loan(
            id=int(row["id"]),
            book_id=int(row["book_id"]),
            borrower_id=int(row["borrower_id"]),
            checkout_date=_str_or_empty(row.get("checkout_date")),
            due_date=row.get("due_date"),
            return_date=row.get("return_date"),
            status=row["status"],
        )


@dataclass
class BookView:
    """A book joined with its category name and comma-joined author names."""

    id: int
    title: str
    isbn: Optional[str]
    publication_year: Optional[int]
    publisher: str
    total_copies: int
    available_copies: int
    category_id: Optional[int]
    category_name: str
    authors: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LoanView:
    """A loan joined with the borrowed book's title, ISBN and authors."""

    id: int
    book_id: int
    borrower_id: int
    title: str
    isbn: Optional[str]
    authors: str
    checkout_date: str
    due_date: Optional[str]
    return_date: Optional[str]
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == LOAN_ACTIVE

    def to_dict(self) -> dict:
        return asdict(self)
