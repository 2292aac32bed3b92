from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .analytics import SQLiteBorrowingAnalytics
from .catalog import SQLiteCatalogStore
from .config import Settings, settings as default_settings
from .database import Database
from .inventory import SQLiteCopyInventory
from .ledger import SQLiteBorrowingLedger
from .lending import LendingService
from .members import SQLiteMemberDirectory
from .search import CatalogSearchEngine


@dataclass
class Services:
    """One wired set of components sharing a database."""

    db: Database
    catalog: SQLiteCatalogStore
    inventory: SQLiteCopyInventory
    ledger: SQLiteBorrowingLedger
    members: SQLiteMemberDirectory
    lending: LendingService
    search: CatalogSearchEngine
    analytics: SQLiteBorrowingAnalytics


def build_services(database: Optional[Database] = None, config: Optional[Settings] = None) -> Services:
    """Wire every component explicitly and make sure the schema exists."""
    config = config or default_settings
    db = database or Database(config.database_file, timeout=config.database_timeout)
    db.initialize()

    catalog = SQLiteCatalogStore(db)
    inventory = SQLiteCopyInventory(db)
    ledger = SQLiteBorrowingLedger(db)
    members = SQLiteMemberDirectory(db)
    lending = LendingService(
        db,
        catalog,
        inventory,
        ledger,
        members,
        max_active_loans=config.max_active_loans,
        loan_period=timedelta(days=config.loan_period_days),
        retry_attempts=config.borrow_retry_attempts,
    )
    return Services(
        db=db,
        catalog=catalog,
        inventory=inventory,
        ledger=ledger,
        members=members,
        lending=lending,
        search=CatalogSearchEngine(db),
        analytics=SQLiteBorrowingAnalytics(db),
    )
