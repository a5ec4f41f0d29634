import pytest
from fastapi.testclient import TestClient

from circulation.api import create_app
from circulation.config import settings

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(lib):
    with TestClient(create_app(lib)) as test_client:
        yield test_client


@pytest.fixture
def catalog(client):
    category = client.post("/categories", headers=HEADERS, json={"name": "Fiction"}).json()
    author = client.post("/authors", headers=HEADERS,
                         json={"first_name": "J.", "last_name": "Doe"}).json()
    book = client.post("/books", headers=HEADERS, json={
        "title": "T", "isbn": "978-0-000-00000-2", "total_copies": 1,
        "category_id": category["id"], "author_ids": [author["id"]],
    }).json()
    borrower = client.post("/borrowers", headers=HEADERS, json={
        "first_name": "Xavier", "last_name": "Xu", "email": "x@example.com",
    }).json()
    return {"category": category, "author": author, "book": book, "borrower": borrower}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["db"] is True


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


def test_create_book(catalog):
    book = catalog["book"]
    assert book["isbn"] == "9780000000002"
    assert book["authors"] == "J. Doe"
    assert book["category_name"] == "Fiction"
    assert book["available_copies"] == book["total_copies"] == 1


def test_add_book_with_invalid_api_key(client):
    response = client.post("/categories", headers={"X-API-Key": "invalid-key"},
                           json={"name": "Fiction"})
    assert response.status_code == 403


def test_blank_title_is_rejected(client, catalog):
    response = client.post("/books", headers=HEADERS, json={
        "title": "   ", "category_id": catalog["category"]["id"],
    })
    assert response.status_code == 422


def test_zero_copies_is_rejected(client, catalog):
    response = client.post("/books", headers=HEADERS, json={
        "title": "Nothing", "total_copies": 0, "category_id": catalog["category"]["id"],
    })
    assert response.status_code == 422


def test_duplicate_isbn_is_a_constraint_error(client, catalog):
    response = client.post("/books", headers=HEADERS, json={
        "title": "Copycat", "isbn": "9780000000002", "category_id": catalog["category"]["id"],
    })
    assert response.status_code == 400


def test_search_by_author(client, catalog):
    response = client.get("/books", params={"q": "DOE"})
    assert [b["title"] for b in response.json()] == ["T"]


def test_borrow_return_lifecycle(client, catalog):
    book_id = catalog["book"]["id"]
    card = catalog["borrower"]["card_number"]

    response = client.post("/loans", headers=HEADERS,
                           json={"book_id": book_id, "borrower_id": card})
    assert response.status_code == 201
    assert response.json()["due_date"]
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 0

    # no copy left
    response = client.post("/loans", headers=HEADERS,
                           json={"book_id": book_id, "borrower_id": card})
    assert response.status_code == 409

    # the book and the borrower cannot be deleted while the loan is out
    assert client.delete(f"/books/{book_id}", headers=HEADERS).status_code == 409
    assert client.delete(f"/borrowers/{card}", headers=HEADERS).status_code == 409

    loans = client.get(f"/borrowers/{card}/loans").json()
    assert len(loans) == 1
    loan_id = loans[0]["id"]

    response = client.post(f"/loans/{loan_id}/return", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["loan"]["status"] == "returned"
    assert client.post(f"/loans/{loan_id}/return", headers=HEADERS).status_code == 409
    assert client.post("/loans/999/return", headers=HEADERS).status_code == 404

    history = client.get(f"/borrowers/{card}/loans", params={"history": True}).json()
    assert [loan["status"] for loan in history] == ["returned"]
    assert client.get(f"/borrowers/{card}/loans").json() == []

    assert client.delete(f"/books/{book_id}", headers=HEADERS).status_code == 200
    assert client.get(f"/books/{book_id}").status_code == 404


def test_borrow_with_explicit_due_date(client, catalog):
    response = client.post("/loans", headers=HEADERS, json={
        "book_id": catalog["book"]["id"],
        "borrower_id": catalog["borrower"]["card_number"],
        "due_date": "2025-01-01",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["due_date"] == "2025-01-01"

    # the id in the response is enough to return the loan
    response = client.post(f"/loans/{body['id']}/return", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["loan"]["book_id"] == catalog["book"]["id"]


def test_update_book_keeps_authors_when_list_empty(client, catalog):
    book = catalog["book"]
    response = client.put(f"/books/{book['id']}", headers=HEADERS, json={
        "title": "T (2nd ed.)", "total_copies": 3, "category_id": catalog["category"]["id"],
    })
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "T (2nd ed.)"
    assert body["authors"] == "J. Doe"
    assert body["available_copies"] == 3
    assert client.get(f"/books/{book['id']}/authors").json()["author_ids"] == [
        catalog["author"]["id"]
    ]


def test_delete_category_in_use(client, catalog):
    category_id = catalog["category"]["id"]
    assert client.delete(f"/categories/{category_id}", headers=HEADERS).status_code == 409
    assert client.delete("/categories/999", headers=HEADERS).status_code == 404


def test_delete_author_in_use(client, catalog):
    author_id = catalog["author"]["id"]
    assert client.delete(f"/authors/{author_id}", headers=HEADERS).status_code == 409


def test_borrower_validation_and_duplicates(client, catalog):
    response = client.post("/borrowers", headers=HEADERS, json={
        "first_name": "No", "last_name": "Mail", "email": "nope",
    })
    assert response.status_code == 422
    response = client.post("/borrowers", headers=HEADERS, json={
        "first_name": "Dup", "last_name": "Licate", "email": "x@example.com",
    })
    assert response.status_code == 400


def test_unknown_borrower_is_a_constraint_error(client, catalog):
    response = client.post("/loans", headers=HEADERS,
                           json={"book_id": catalog["book"]["id"], "borrower_id": 999})
    assert response.status_code == 400
    assert client.get(f"/books/{catalog['book']['id']}").json()["available_copies"] == 1
