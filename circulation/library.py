import logging
from typing import Optional

from circulation.borrowers import BorrowerRepository
from circulation.catalog import CatalogRepository
from circulation.database import Database
from circulation.ledger import CirculationLedger
from circulation.queries import QueryFacade

logger = logging.getLogger(__name__)


class Library:
    """Owns one database handle and the repositories built on top of it."""

    def __init__(self, db_file: Optional[str] = None, db: Optional[Database] = None) -> None:
        self.db = db or Database(db_file)
        # Make sure the schema exists on every start; creation is idempotent
        self.db.create_tables()

        self.queries = QueryFacade(self.db)
        self.catalog = CatalogRepository(self.db, self.queries)
        self.borrowers = BorrowerRepository(self.db)
        self.ledger = CirculationLedger(self.db, self.queries)
        logger.debug(f"Library opened on {self.db.db_file}")

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "Library":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
