"""Lending Library - catalog, copy inventory and loan lifecycle.

This package contains:
- Catalog store and book model (catalog.py, book.py)
- Copy inventory and availability state (inventory.py)
- Borrowing ledger and lending policy (ledger.py, lending.py)
- Catalog search engine (search.py)
- Borrowing analytics (analytics.py)
- HTTP API (api.py) and CLI (cli.py)
"""

from .analytics import SQLiteBorrowingAnalytics
from .book import Book
from .catalog import SQLiteCatalogStore
from .database import Database
from .errors import (
    BookHasActiveLoans,
    BookNotFound,
    BorrowingLimitExceeded,
    CopyNotAvailable,
    CopyNotFound,
    DuplicateID,
    InvalidInput,
    LibraryError,
    LoanNotFound,
    MemberNotFound,
    NoBorrowedCopy,
    NoCopyAvailable,
    NotAuthorized,
    NotFound,
    StorageFailure,
)
from .inventory import Copy, CopyStats, CopyStatus, SQLiteCopyInventory
from .ledger import Loan, LoanDetails, SQLiteBorrowingLedger
from .lending import BorrowResult, LendingService, ReturnResult
from .members import Identity, Member, SQLiteMemberDirectory
from .search import CatalogSearchEngine, SearchParams, SearchResult
from .services import Services, build_services

__all__ = [
    "Book",
    "Copy",
    "CopyStats",
    "CopyStatus",
    "Loan",
    "LoanDetails",
    "Member",
    "Identity",
    "Database",
    "SQLiteCatalogStore",
    "SQLiteCopyInventory",
    "SQLiteBorrowingLedger",
    "SQLiteMemberDirectory",
    "LendingService",
    "BorrowResult",
    "ReturnResult",
    "CatalogSearchEngine",
    "SQLiteBorrowingAnalytics",
    "SearchParams",
    "SearchResult",
    "Services",
    "build_services",
    "LibraryError",
    "InvalidInput",
    "NotFound",
    "BookNotFound",
    "CopyNotFound",
    "MemberNotFound",
    "LoanNotFound",
    "NoBorrowedCopy",
    "DuplicateID",
    "CopyNotAvailable",
    "NoCopyAvailable",
    "BorrowingLimitExceeded",
    "BookHasActiveLoans",
    "NotAuthorized",
    "StorageFailure",
]
