"""Capability interfaces for the stores the lending core depends on.

``conn`` parameters are transaction handles obtained from
``Database.transaction()``; passing one makes the call join that
transaction instead of opening its own.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from .book import Book
from .inventory import Copy, CopyStats, CopyStatus
from .ledger import Loan, LoanDetails
from .members import Member


class CatalogStore(Protocol):
    def create(self, book: Union[Book, Mapping[str, Any]]) -> Book: ...

    def get(self, book_id: str, conn: Any = None) -> Optional[Book]: ...

    def require(self, book_id: str, conn: Any = None) -> Book: ...

    def update(self, book_id: str, fields: Mapping[str, Any]) -> Optional[Book]: ...

    def delete(self, book_id: str) -> bool: ...

    def list_all(self) -> List[Book]: ...

    def list_genres(self) -> List[str]: ...

    def statistics(self) -> Dict[str, Any]: ...


class CopyInventory(Protocol):
    def create_copy(self, book_id: str, conn: Any = None) -> str: ...

    def get_copy(self, copy_id: str, conn: Any = None) -> Optional[Copy]: ...

    def list_copies(self, book_id: str) -> List[Copy]: ...

    def find_available_copy(self, book_id: str, conn: Any = None) -> Optional[Copy]: ...

    def find_borrowed_copy(self, book_id: str, conn: Any = None) -> Optional[Copy]: ...

    def transition(self, copy_id: str, expected: CopyStatus, new: CopyStatus, conn: Any = None) -> bool: ...

    def set_status(self, copy_id: str, status: CopyStatus) -> bool: ...

    def stats_for_book(self, book_id: str, conn: Any = None) -> CopyStats: ...


class BorrowingLedger(Protocol):
    def open_loan(self, member_id: str, copy_id: str, borrowed_at: datetime, due_at: datetime,
                  conn: Any = None) -> Loan: ...

    def close_loan(self, borrowing_id: str, returned_at: datetime, conn: Any = None) -> bool: ...

    def get_loan(self, borrowing_id: str, conn: Any = None) -> Optional[Loan]: ...

    def find_open_loan(self, borrowing_id: str, conn: Any = None) -> Optional[Loan]: ...

    def find_open_loan_for_copy(self, copy_id: str, conn: Any = None) -> Optional[Loan]: ...

    def active_count(self, member_id: str, conn: Any = None) -> int: ...

    def active_loans(self, member_id: str) -> List[LoanDetails]: ...

    def open_loans_for_book(self, book_id: str) -> List[LoanDetails]: ...

    def history(self, member_id: str) -> List[LoanDetails]: ...


class MemberDirectory(Protocol):
    def get(self, member_id: str, conn: Any = None) -> Optional[Member]: ...

    def require(self, member_id: str, conn: Any = None) -> Member: ...
