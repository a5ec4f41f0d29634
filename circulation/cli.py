import subprocess
import sys
import webbrowser
from typing import List, Optional

import typer

from circulation.config import configure_logging, settings
from circulation.database import CirculationError
from circulation.ledger import default_due_date
from circulation.library import Library
from circulation.validators import (
    ISBNValidator,
    NumberValidator,
    TextValidator,
    ValidationError,
)
from circulation.ui_helpers import print_books, print_borrowers, print_loans, set_output_mode


app = typer.Typer(help="Library circulation CLI")


@app.callback()
def _global_options(
    ctx: typer.Context,
    db_file: Optional[str] = typer.Option(
        None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE or library.db)"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
):
    """Global options (database file, output mode)."""
    configure_logging("WARNING")
    ctx.obj = {"db_file": db_file or settings.database_file}
    if output:
        set_output_mode(output)


def _open(ctx: typer.Context) -> Library:
    return Library(db_file=ctx.obj["db_file"])


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


@app.command("init-db")
def cli_init_db(ctx: typer.Context):
    """Create the database tables if they do not exist."""
    with _open(ctx):
        pass
    print(f"Database ready: {ctx.obj['db_file']}")


# ------------------------- Catalog ------------------------- #
@app.command("books")
def cli_books(ctx: typer.Context,
              search: Optional[str] = typer.Option(None, "--search", "-s",
                                                   help="Title, ISBN or author substring")):
    """List books, optionally filtered."""
    with _open(ctx) as lib:
        print_books(lib.catalog.search_books(search))


@app.command("add-category")
def cli_add_category(ctx: typer.Context, name: str,
                     description: str = typer.Option("", "--description", "-d")):
    """Add a category."""
    try:
        name = TextValidator.require(name, "Category name")
    except ValidationError as e:
        _fail(str(e))
    with _open(ctx) as lib:
        category_id = lib.catalog.add_category(name, TextValidator.optional(description))
    print(f"Added category {category_id}: {name}")


@app.command("add-author")
def cli_add_author(ctx: typer.Context, first_name: str, last_name: str,
                   birth_year: Optional[str] = typer.Option(None, "--birth-year"),
                   biography: str = typer.Option("", "--bio")):
    """Add an author."""
    try:
        first_name = TextValidator.require(first_name, "First name and last name")
        last_name = TextValidator.require(last_name, "First name and last name")
        year = NumberValidator.parse_year(birth_year, "Birth year") or 0
        biography = TextValidator.optional(biography)
    except ValidationError as e:
        _fail(str(e))
    with _open(ctx) as lib:
        author_id = lib.catalog.add_author(first_name, last_name, year, biography)
    print(f"Added author {author_id}: {first_name} {last_name}")


@app.command("add-book")
def cli_add_book(ctx: typer.Context, title: str,
                 category: int = typer.Option(..., "--category", "-c", help="Category id"),
                 author: Optional[List[int]] = typer.Option(None, "--author", "-a",
                                                            help="Author id (repeatable)"),
                 isbn: Optional[str] = typer.Option(None, "--isbn"),
                 year: Optional[str] = typer.Option(None, "--year"),
                 publisher: str = typer.Option("", "--publisher"),
                 copies: str = typer.Option("1", "--copies")):
    """Add a book with its authors."""
    try:
        title = TextValidator.require(title, "Title")
        publication_year = NumberValidator.parse_year(year, "Publication year")
        total_copies = NumberValidator.parse_copies(copies)
        publisher = TextValidator.optional(publisher)
    except ValidationError as e:
        _fail(str(e))
    with _open(ctx) as lib:
        try:
            book_id = lib.catalog.add_book(title, ISBNValidator.clean(isbn), publication_year,
                                           publisher, total_copies, category,
                                           author or [])
        except CirculationError as e:
            _fail(f"Failed to save book: {e}")
    print(f"Added book {book_id}: {title}")


@app.command("delete-book")
def cli_delete_book(ctx: typer.Context, book_ids: List[int]):
    """Delete one or more books. Books with active loans are kept."""
    failed = 0
    with _open(ctx) as lib:
        for book_id in book_ids:
            if lib.catalog.delete_book(book_id):
                print(f"Book {book_id} has been deleted.")
            else:
                failed += 1
    if failed:
        print(f"Failed to delete {failed} book(s). They may have active loans.")


# ------------------------- Borrowers ------------------------- #
@app.command("borrowers")
def cli_borrowers(ctx: typer.Context,
                  search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List borrowers, optionally filtered."""
    with _open(ctx) as lib:
        print_borrowers(lib.borrowers.search_borrowers(search))


@app.command("add-borrower")
def cli_add_borrower(ctx: typer.Context, first_name: str, last_name: str, email: str,
                     address: str = typer.Option("", "--address"),
                     phone: str = typer.Option("", "--phone")):
    """Register a borrower."""
    try:
        first_name = TextValidator.require(first_name, "First name, last name, and email")
        last_name = TextValidator.require(last_name, "First name, last name, and email")
        email = TextValidator.validate_email(email)
        address, phone = TextValidator.optional(address), TextValidator.optional(phone)
    except ValidationError as e:
        _fail(str(e))
    with _open(ctx) as lib:
        try:
            card_number = lib.borrowers.add_borrower(first_name, last_name, address,
                                                     phone, email)
        except CirculationError as e:
            _fail(f"Failed to save borrower: {e}")
    print(f"Registered borrower {card_number}: {first_name} {last_name}")


@app.command("delete-borrower")
def cli_delete_borrower(ctx: typer.Context, card_numbers: List[int]):
    """Delete one or more borrowers. Borrowers with active loans are kept."""
    failed = 0
    with _open(ctx) as lib:
        for card_number in card_numbers:
            if lib.borrowers.delete_borrower(card_number):
                print(f"Borrower {card_number} has been deleted.")
            else:
                failed += 1
    if failed:
        print(f"Failed to delete {failed} user(s). They may have active loans.")


# ------------------------- Circulation ------------------------- #
@app.command("borrow")
def cli_borrow(ctx: typer.Context, card_number: int, book_ids: List[int],
               due: Optional[str] = typer.Option(None, "--due",
                                                 help="Due date (default: loan period from today)")):
    """Borrow one or more books for a borrower."""
    due_date = due or default_due_date()
    with _open(ctx) as lib:
        if not lib.borrowers.get_borrower(card_number):
            _fail(f"Borrower {card_number} not found.")
        borrowed, refused = lib.ledger.borrow_books(book_ids, card_number, due_date)
    if borrowed:
        print(f"{len(borrowed)} book(s) borrowed, due {due_date}")
    if refused:
        ids = ", ".join(str(book_id) for book_id in refused)
        print(f"The following books are not available for borrowing: {ids}")


@app.command("return")
def cli_return(ctx: typer.Context, loan_ids: List[int]):
    """Return one or more loans."""
    with _open(ctx) as lib:
        returned, refused = lib.ledger.return_books(loan_ids)
    if returned:
        print(f"{len(returned)} book(s) returned")
    if refused:
        ids = ", ".join(str(loan_id) for loan_id in refused)
        print(f"Not active, nothing to return: {ids}")


@app.command("loans")
def cli_loans(ctx: typer.Context, card_number: int,
              history: bool = typer.Option(False, "--history", help="Include returned loans")):
    """Show a borrower's active loans, or their whole history."""
    with _open(ctx) as lib:
        if history:
            loans = lib.ledger.get_borrower_history(card_number)
            # Active loans first, each group keeps most-recent-first order
            loans = [loan for loan in loans if loan.is_active] + [
                loan for loan in loans if not loan.is_active
            ]
        else:
            loans = lib.ledger.get_borrower_active_loans(card_number)
    print_loans(loans)


@app.command("serve")
def cli_serve(host: str = typer.Option(settings.api_host, "--host"),
              port: int = typer.Option(settings.api_port, "--port"),
              open_browser: bool = typer.Option(True, "--open/--no-open")):
    """Start the HTTP API with uvicorn."""
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        webbrowser.open(url)
    subprocess.run([sys.executable, "-m", "uvicorn", "circulation.api:app",
                    "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
