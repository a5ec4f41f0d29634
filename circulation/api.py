import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field, field_validator

from circulation.config import configure_logging, settings
from circulation.database import ConstraintViolationError, PersistenceError
from circulation.ledger import default_due_date
from circulation.library import Library
from circulation.validators import ISBNValidator, NumberValidator, TextValidator

logger = logging.getLogger(__name__)


# --- Models ---
class CategoryIn(BaseModel):
    name: str
    description: str = ""

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return TextValidator.require(v, "Category name")


class CategoryModel(BaseModel):
    id: int
    name: str
    description: str


class AuthorIn(BaseModel):
    first_name: str
    last_name: str
    birth_year: Optional[int] = Field(default=None, description="Leave empty when unknown")
    biography: str = ""

    @field_validator("first_name", "last_name")
    @classmethod
    def _names(cls, v: str) -> str:
        return TextValidator.require(v, "First name and last name")


class AuthorModel(BaseModel):
    id: int
    first_name: str
    last_name: str
    birth_year: int
    biography: str


class BookIn(BaseModel):
    title: str
    isbn: Optional[str] = None
    publication_year: Optional[int] = None
    publisher: str = ""
    total_copies: int = 1
    category_id: int = Field(..., description="Every book belongs to a category")
    author_ids: List[int] = Field(
        default_factory=list,
        description="On update an empty list keeps the current authors",
    )

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return TextValidator.require(v, "Title")

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, v: Optional[str]) -> Optional[str]:
        return ISBNValidator.clean(v)

    @field_validator("total_copies")
    @classmethod
    def _copies(cls, v: int) -> int:
        return NumberValidator.parse_copies(v)


class BookModel(BaseModel):
    id: int
    title: str
    isbn: Optional[str] = None
    publication_year: Optional[int] = None
    publisher: str
    total_copies: int
    available_copies: int
    category_id: Optional[int] = None
    category_name: str
    authors: str


class BorrowerIn(BaseModel):
    first_name: str
    last_name: str
    address: str = ""
    phone: str = ""
    email: str

    @field_validator("first_name", "last_name")
    @classmethod
    def _names(cls, v: str) -> str:
        return TextValidator.require(v, "First name, last name, and email")

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return TextValidator.validate_email(v)


class BorrowerModel(BaseModel):
    card_number: int
    first_name: str
    last_name: str
    address: str
    phone: str
    email: str
    registration_date: str


class LoanCreate(BaseModel):
    book_id: int
    borrower_id: int
    due_date: Optional[date] = Field(
        default=None, description=f"Defaults to {settings.loan_period_days} days from today"
    )


class LoanModel(BaseModel):
    id: int
    book_id: int
    borrower_id: int
    title: str
    isbn: Optional[str] = None
    authors: str
    checkout_date: str
    due_date: Optional[str] = None
    return_date: Optional[str] = None
    status: str


# --- Dependencies ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency that checks the API key on mutating routes."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_library(request: Request) -> Library:
    return request.app.state.library


router = APIRouter()


# --- Health ---
@router.get("/health")
def health(library: Library = Depends(get_library)):
    db_ok = True
    try:
        library.db.query_one("SELECT 1 AS ok")
    except PersistenceError:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Books ---
@router.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = Query(None, description="Title, ISBN or author substring"),
               library: Library = Depends(get_library)):
    return [BookModel(**view.to_dict()) for view in library.catalog.search_books(q)]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, library: Library = Depends(get_library)):
    view = library.queries.book_view(book_id)
    if not view:
        raise HTTPException(status_code=404, detail="Book not found.")
    return BookModel(**view.to_dict())


@router.get("/books/{book_id}/authors")
def get_book_authors(book_id: int, library: Library = Depends(get_library)):
    if not library.catalog.get_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    return {"book_id": book_id, "author_ids": library.catalog.get_book_author_ids(book_id)}


@router.post("/books", response_model=BookModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def add_book(payload: BookIn, library: Library = Depends(get_library)):
    book_id = library.catalog.add_book(
        payload.title, payload.isbn, payload.publication_year, payload.publisher,
        payload.total_copies, payload.category_id, payload.author_ids,
    )
    return BookModel(**library.queries.book_view(book_id).to_dict())


@router.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, payload: BookIn, library: Library = Depends(get_library)):
    updated = library.catalog.update_book(
        book_id, payload.title, payload.isbn, payload.publication_year, payload.publisher,
        payload.total_copies, payload.category_id, payload.author_ids,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Book not found.")
    return BookModel(**library.queries.book_view(book_id).to_dict())


@router.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int, library: Library = Depends(get_library)):
    if not library.catalog.get_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    if not library.catalog.delete_book(book_id):
        raise HTTPException(status_code=409, detail="Book has active loans.")
    return {"message": "Book deleted."}


# --- Categories ---
@router.get("/categories", response_model=List[CategoryModel])
def list_categories(q: Optional[str] = None, library: Library = Depends(get_library)):
    return [CategoryModel(**c.to_dict()) for c in library.catalog.search_categories(q)]


@router.post("/categories", response_model=CategoryModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def add_category(payload: CategoryIn, library: Library = Depends(get_library)):
    category_id = library.catalog.add_category(payload.name, payload.description)
    return CategoryModel(**library.catalog.get_category(category_id).to_dict())


@router.put("/categories/{category_id}", response_model=CategoryModel,
            dependencies=[Depends(get_api_key)])
def update_category(category_id: int, payload: CategoryIn,
                    library: Library = Depends(get_library)):
    if not library.catalog.update_category(category_id, payload.name, payload.description):
        raise HTTPException(status_code=404, detail="Category not found.")
    return CategoryModel(**library.catalog.get_category(category_id).to_dict())


@router.delete("/categories/{category_id}", dependencies=[Depends(get_api_key)])
def delete_category(category_id: int, library: Library = Depends(get_library)):
    if not library.catalog.get_category(category_id):
        raise HTTPException(status_code=404, detail="Category not found.")
    if not library.catalog.delete_category(category_id):
        raise HTTPException(status_code=409, detail="Category is still used by books.")
    return {"message": "Category deleted."}


# --- Authors ---
@router.get("/authors", response_model=List[AuthorModel])
def list_authors(q: Optional[str] = None, library: Library = Depends(get_library)):
    return [AuthorModel(**a.to_dict()) for a in library.catalog.search_authors(q)]


@router.post("/authors", response_model=AuthorModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def add_author(payload: AuthorIn, library: Library = Depends(get_library)):
    author_id = library.catalog.add_author(
        payload.first_name, payload.last_name, payload.birth_year or 0, payload.biography
    )
    return AuthorModel(**library.catalog.get_author(author_id).to_dict())


@router.put("/authors/{author_id}", response_model=AuthorModel,
            dependencies=[Depends(get_api_key)])
def update_author(author_id: int, payload: AuthorIn, library: Library = Depends(get_library)):
    updated = library.catalog.update_author(
        author_id, payload.first_name, payload.last_name, payload.birth_year or 0,
        payload.biography,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Author not found.")
    return AuthorModel(**library.catalog.get_author(author_id).to_dict())


@router.delete("/authors/{author_id}", dependencies=[Depends(get_api_key)])
def delete_author(author_id: int, library: Library = Depends(get_library)):
    if not library.catalog.get_author(author_id):
        raise HTTPException(status_code=404, detail="Author not found.")
    if not library.catalog.delete_author(author_id):
        raise HTTPException(status_code=409, detail="Author is still linked to books.")
    return {"message": "Author deleted."}


# --- Borrowers ---
@router.get("/borrowers", response_model=List[BorrowerModel])
def list_borrowers(q: Optional[str] = None, library: Library = Depends(get_library)):
    return [BorrowerModel(**b.to_dict()) for b in library.borrowers.search_borrowers(q)]


@router.get("/borrowers/{card_number}", response_model=BorrowerModel)
def get_borrower(card_number: int, library: Library = Depends(get_library)):
    borrower = library.borrowers.get_borrower(card_number)
    if not borrower:
        raise HTTPException(status_code=404, detail="Borrower not found.")
    return BorrowerModel(**borrower.to_dict())


@router.post("/borrowers", response_model=BorrowerModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def add_borrower(payload: BorrowerIn, library: Library = Depends(get_library)):
    card_number = library.borrowers.add_borrower(
        payload.first_name, payload.last_name, payload.address, payload.phone, payload.email
    )
    return BorrowerModel(**library.borrowers.get_borrower(card_number).to_dict())


@router.put("/borrowers/{card_number}", response_model=BorrowerModel,
            dependencies=[Depends(get_api_key)])
def update_borrower(card_number: int, payload: BorrowerIn,
                    library: Library = Depends(get_library)):
    updated = library.borrowers.update_borrower(
        card_number, payload.first_name, payload.last_name, payload.address, payload.phone,
        payload.email,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Borrower not found.")
    return BorrowerModel(**library.borrowers.get_borrower(card_number).to_dict())


@router.delete("/borrowers/{card_number}", dependencies=[Depends(get_api_key)])
def delete_borrower(card_number: int, library: Library = Depends(get_library)):
    if not library.borrowers.get_borrower(card_number):
        raise HTTPException(status_code=404, detail="Borrower not found.")
    if not library.borrowers.delete_borrower(card_number):
        raise HTTPException(status_code=409, detail="Borrower has active loans.")
    return {"message": "Borrower deleted."}


@router.get("/borrowers/{card_number}/loans", response_model=List[LoanModel])
def borrower_loans(card_number: int, history: bool = False,
                   library: Library = Depends(get_library)):
    if history:
        loans = library.ledger.get_borrower_history(card_number)
    else:
        loans = library.ledger.get_borrower_active_loans(card_number)
    return [LoanModel(**loan.to_dict()) for loan in loans]


# --- Loans ---
@router.post("/loans", status_code=201, dependencies=[Depends(get_api_key)])
def borrow_book(payload: LoanCreate, library: Library = Depends(get_library)):
    due_date = payload.due_date.isoformat() if payload.due_date else default_due_date()
    loan_id = library.ledger.checkout(payload.book_id, payload.borrower_id, due_date)
    if loan_id is None:
        raise HTTPException(status_code=409, detail="Book is not available for borrowing.")
    return {"id": loan_id, "book_id": payload.book_id, "borrower_id": payload.borrower_id,
            "due_date": due_date}


@router.post("/loans/{loan_id}/return", dependencies=[Depends(get_api_key)])
def return_book(loan_id: int, library: Library = Depends(get_library)):
    if not library.ledger.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found.")
    if not library.ledger.return_book(loan_id):
        raise HTTPException(status_code=409, detail="Loan was already returned.")
    return {"message": "Book returned.", "loan": library.ledger.get_loan(loan_id).to_dict()}


# --- Application ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Open the default library only when none was injected
    owned = getattr(app.state, "library", None) is None
    if owned:
        configure_logging()
        app.state.library = Library()
    try:
        yield
    finally:
        if owned:
            app.state.library.close()
            app.state.library = None


def create_app(library: Optional[Library] = None) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library
    app.include_router(router)

    @app.exception_handler(ConstraintViolationError)
    async def _constraint_violation(request: Request, exc: ConstraintViolationError):
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=400, content={"detail": f"Constraint violation: {exc}"})

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Database unavailable."})

    return app


app = create_app()
