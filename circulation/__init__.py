"""Library Circulation - Core Package

This package contains the circulation and inventory engine:
- Persistence access and schema (database.py)
- Entity records and read projections (models.py)
- Catalog repository: books, authors, categories (catalog.py)
- Borrower repository (borrowers.py)
- Circulation ledger: borrow / return (ledger.py)
- Joined read views and search (queries.py)
- Composition root (library.py)
- Boundary validation, HTTP API and CLI (validators.py, api.py, cli.py)
"""

__version__ = "1.0.0"
