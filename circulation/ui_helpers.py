import json
import os
from typing import List, Sequence

from rich.console import Console
from rich.table import Table

# Environment variable that controls CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_records(records: Sequence, columns: List[str], title: str, empty_message: str,
                  plain_format: str) -> None:
    """Print dataclass records in the current output mode.

    - plain: one ``plain_format.format(**record)`` line per record
    - json: JSON array of the selected columns
    - rich: Rich table with one column per selected field
    """
    if not records:
        print(empty_message)
        return

    rows = [record.to_dict() for record in records]
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([{c: row[c] for c in columns} for row in rows], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column.replace("_", " ").title())
        for row in rows:
            table.add_row(*["" if row[c] is None else str(row[c]) for c in columns])
        _console.print(table)
    else:
        for row in rows:
            print(plain_format.format(**row))


def print_books(books: Sequence) -> None:
    print_records(
        books,
        ["id", "title", "authors", "isbn", "category_name", "available_copies", "total_copies"],
        title="Books",
        empty_message="No books in library.",
        plain_format="{id} - {title} by {authors} [{available_copies}/{total_copies} available]",
    )


def print_borrowers(borrowers: Sequence) -> None:
    print_records(
        borrowers,
        ["card_number", "first_name", "last_name", "email", "phone"],
        title="Borrowers",
        empty_message="No borrowers registered.",
        plain_format="{card_number} - {first_name} {last_name} <{email}>",
    )


def print_loans(loans: Sequence) -> None:
    print_records(
        loans,
        ["id", "title", "authors", "checkout_date", "due_date", "return_date", "status"],
        title="Loans",
        empty_message="No loans.",
        plain_format="{id} - {title} ({status}) due {due_date}",
    )
