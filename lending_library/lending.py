"""Borrow/return orchestration and the borrowing-eligibility policy.

``LendingService`` is the only writer of loans and of the
``Available`` <-> ``Borrowed`` copy transitions. Each borrow or return runs
as one database transaction, so the copy status change and the loan row
change commit or roll back together. The member's open-loan count is read
inside that same transaction, under the write lock, which means two
concurrent borrows for the same member are serialised and cannot both
pass the limit check.

All timestamps are UTC. A loan is due exactly ``loan_period`` after the
moment it was opened, with no rounding to whole days.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .database import Database, to_iso, utc_now
from .errors import (
    BookNotFound,
    BorrowingLimitExceeded,
    CopyNotAvailable,
    InvalidInput,
    LoanNotFound,
    NoBorrowedCopy,
    NoCopyAvailable,
    NotAuthorized,
)
from .interfaces import BorrowingLedger, CatalogStore, CopyInventory, MemberDirectory
from .inventory import Copy, CopyStats, CopyStatus
from .ledger import Loan, LoanDetails
from .members import Identity

logger = logging.getLogger(__name__)

MAX_ACTIVE_LOANS = 3
LOAN_PERIOD = timedelta(days=14)


@dataclass
class BorrowResult:
    borrowing_id: str
    copy_id: str
    book_id: str
    due_date: datetime
    message: str = ""
    success: bool = True

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "borrowing_id": self.borrowing_id,
            "copy_id": self.copy_id,
            "book_id": self.book_id,
            "due_date": to_iso(self.due_date),
            "message": self.message,
        }


@dataclass
class ReturnResult:
    copy_id: str
    borrowing_id: Optional[str]
    returned_at: datetime
    message: str = ""
    success: bool = True

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "copy_id": self.copy_id,
            "borrowing_id": self.borrowing_id,
            "returned_at": to_iso(self.returned_at),
            "message": self.message,
        }


@dataclass
class MemberSummary:
    member_id: str
    active_count: int
    limit: int
    loans: List[LoanDetails] = field(default_factory=list)

    @property
    def remaining(self) -> int:
        return max(self.limit - self.active_count, 0)

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "active_count": self.active_count,
            "limit": self.limit,
            "remaining": self.remaining,
            "loans": [loan.to_dict() for loan in self.loans],
        }


def _require_text(name: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} must be a non-empty string", field=name)
    return value.strip()


class LendingService:
    def __init__(
        self,
        db: Database,
        catalog: CatalogStore,
        inventory: CopyInventory,
        ledger: BorrowingLedger,
        members: MemberDirectory,
        max_active_loans: int = MAX_ACTIVE_LOANS,
        loan_period: timedelta = LOAN_PERIOD,
        retry_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_active_loans < 1:
            raise InvalidInput("max_active_loans must be at least 1")
        self.db = db
        self.catalog = catalog
        self.inventory = inventory
        self.ledger = ledger
        self.members = members
        self.max_active_loans = max_active_loans
        self.loan_period = loan_period
        self.retry_attempts = max(retry_attempts, 1)
        self.clock = clock

    # ------------------------- Borrow / return ------------------------- #
    def borrow(self, book_id: str, member_id: str) -> BorrowResult:
        """Allocate an available copy of ``book_id`` to ``member_id``."""
        book_id = _require_text("book_id", book_id)
        member_id = _require_text("member_id", member_id)

        with self.db.transaction() as conn:
            book = self.catalog.require(book_id, conn)
            self.members.require(member_id, conn)

            active = self.ledger.active_count(member_id, conn)
            if active >= self.max_active_loans:
                logger.warning(f"Borrow refused: member {member_id} has {active} open loan(s)")
                raise BorrowingLimitExceeded(member_id, self.max_active_loans)

            copy = self._claim_available_copy(book_id, conn)
            now = self.clock()
            loan = self.ledger.open_loan(member_id, copy.copy_id, now, now + self.loan_period, conn)

        logger.info(f"Loan {loan.borrowing_id} opened: member={member_id} copy={copy.copy_id} due={to_iso(loan.due_at)}")
        return BorrowResult(
            borrowing_id=loan.borrowing_id,
            copy_id=copy.copy_id,
            book_id=book_id,
            due_date=loan.due_at,
            message=f'Book "{book.title}" borrowed successfully',
        )

    def return_loan(self, borrowing_id: str, identity: Optional[Identity] = None) -> ReturnResult:
        """Close an open loan by id and put its copy back into circulation.

        When ``identity`` is given, members may only return their own loans;
        admins may return any.
        """
        borrowing_id = _require_text("borrowing_id", borrowing_id)

        with self.db.transaction() as conn:
            loan = self.ledger.find_open_loan(borrowing_id, conn)
            if loan is None:
                raise LoanNotFound(borrowing_id)
            if identity is not None and not identity.is_admin and identity.member_id != loan.member_id:
                raise NotAuthorized(
                    "Loans can only be returned by the member who holds them",
                    borrowing_id=borrowing_id,
                    member_id=identity.member_id,
                )
            returned_at = self._close(loan, conn)

        logger.info(f"Loan {loan.borrowing_id} closed: copy={loan.copy_id}")
        return ReturnResult(
            copy_id=loan.copy_id,
            borrowing_id=loan.borrowing_id,
            returned_at=returned_at,
            message="Book returned successfully",
        )

    def return_book(self, book_id: str) -> ReturnResult:
        """Simplified return path for callers that do not track loan identity."""
        book_id = _require_text("book_id", book_id)

        with self.db.transaction() as conn:
            book = self.catalog.require(book_id, conn)
            copy = self.inventory.find_borrowed_copy(book_id, conn)
            if copy is None:
                raise NoBorrowedCopy(book_id)
            loan = self.ledger.find_open_loan_for_copy(copy.copy_id, conn)
            if loan is not None:
                returned_at = self._close(loan, conn)
            else:
                # Borrowed copy with no loan row: heal the copy, nothing to close.
                logger.warning(f"Copy {copy.copy_id} was Borrowed without an open loan")
                returned_at = self.clock()
                self._release_copy(copy.copy_id, conn)

        logger.info(f"Book {book_id} returned: copy={copy.copy_id}")
        return ReturnResult(
            copy_id=copy.copy_id,
            borrowing_id=loan.borrowing_id if loan else None,
            returned_at=returned_at,
            message=f'Book "{book.title}" returned successfully',
        )

    # ------------------------- Queries ------------------------- #
    def active_loan_count(self, member_id: str) -> int:
        return self.ledger.active_count(_require_text("member_id", member_id))

    def active_loans(self, member_id: str) -> List[LoanDetails]:
        return self.ledger.active_loans(_require_text("member_id", member_id))

    def loan_history(self, member_id: str) -> List[LoanDetails]:
        return self.ledger.history(_require_text("member_id", member_id))

    def loan(self, borrowing_id: str) -> Optional[Loan]:
        return self.ledger.get_loan(_require_text("borrowing_id", borrowing_id))

    def is_available(self, book_id: str) -> bool:
        return self.available_copy_count(book_id) > 0

    def available_copy_count(self, book_id: str) -> int:
        return self.inventory.stats_for_book(_require_text("book_id", book_id)).available

    def open_loans_for_book(self, book_id: str) -> List[LoanDetails]:
        book_id = _require_text("book_id", book_id)
        self.catalog.require(book_id)
        return self.ledger.open_loans_for_book(book_id)

    def member_summary(self, member_id: str) -> MemberSummary:
        member_id = _require_text("member_id", member_id)
        self.members.require(member_id)
        loans = self.ledger.active_loans(member_id)
        return MemberSummary(member_id=member_id, active_count=len(loans), limit=self.max_active_loans, loans=loans)

    def book_details(self, book_id: str) -> Dict[str, object]:
        """Book with its copy statistics and individual copies."""
        book_id = _require_text("book_id", book_id)
        book = self.catalog.get(book_id)
        if book is None:
            raise BookNotFound(book_id)
        stats: CopyStats = self.inventory.stats_for_book(book_id)
        copies: List[Copy] = self.inventory.list_copies(book_id)
        return {"book": book, "stats": stats, "copies": copies}

    # ------------------------- Internals ------------------------- #
    def _claim_available_copy(self, book_id: str, conn) -> Copy:
        """Move the first available copy to Borrowed.

        With the SQLite stores the caller holds ``BEGIN IMMEDIATE``, so the
        compare-and-swap cannot lose and the loop runs once. The retry only
        comes into play for a ``CopyInventory`` whose writes are not
        serialised by the surrounding transaction.
        """
        for attempt in range(1, self.retry_attempts + 1):
            copy = self.inventory.find_available_copy(book_id, conn)
            if copy is None:
                raise NoCopyAvailable(book_id)
            if self.inventory.transition(copy.copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED, conn):
                return copy
            logger.warning(f"Lost allocation race for copy {copy.copy_id} (attempt {attempt}/{self.retry_attempts})")
        raise CopyNotAvailable(f"Could not allocate a copy of book '{book_id}'", book_id=book_id)

    def _close(self, loan: Loan, conn) -> datetime:
        returned_at = self.clock()
        if not self.ledger.close_loan(loan.borrowing_id, returned_at, conn):
            raise LoanNotFound(loan.borrowing_id)
        self._release_copy(loan.copy_id, conn)
        return returned_at

    def _release_copy(self, copy_id: str, conn) -> None:
        if not self.inventory.transition(copy_id, CopyStatus.BORROWED, CopyStatus.AVAILABLE, conn):
            raise CopyNotAvailable(f"Copy '{copy_id}' is not Borrowed", copy_id=copy_id)
