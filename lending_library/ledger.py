import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .database import Database, from_iso, storage_errors, to_iso, utc_now
from .errors import CopyNotAvailable

logger = logging.getLogger(__name__)

_DETAIL_SELECT = """
    SELECT l.*, c.BookID, b.Title, b.Author, m.Name AS MemberName
    FROM loans l
    JOIN copies c ON l.CopyID = c.CopyID
    JOIN books b ON c.BookID = b.ID
    LEFT JOIN members m ON l.MemberID = m.MemberID
"""


def generate_borrowing_id() -> str:
    return f"loan-{uuid.uuid4().hex[:12]}"


@dataclass
class Loan:
    """A borrowing transaction between a member and one copy."""

    borrowing_id: str
    member_id: str
    copy_id: str
    borrowed_at: datetime
    due_at: datetime
    returned_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.returned_at is None

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.is_open and now > self.due_at

    def to_dict(self) -> dict:
        return {
            "borrowing_id": self.borrowing_id,
            "member_id": self.member_id,
            "copy_id": self.copy_id,
            "borrowed_at": to_iso(self.borrowed_at),
            "due_at": to_iso(self.due_at),
            "returned_at": to_iso(self.returned_at),
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Loan":
        return Loan(
            borrowing_id=row["BorrowingID"],
            member_id=row["MemberID"],
            copy_id=row["CopyID"],
            borrowed_at=from_iso(row["BorrowedAt"]),
            due_at=from_iso(row["DueAt"]),
            returned_at=from_iso(row["ReturnedAt"]),
        )


@dataclass
class LoanDetails:
    """A loan joined with the book it covers and the borrowing member."""

    loan: Loan
    book_id: str
    title: str
    author: str
    member_name: Optional[str] = None

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        data = self.loan.to_dict()
        data.update(
            book_id=self.book_id,
            title=self.title,
            author=self.author,
            member_name=self.member_name,
            is_overdue=self.loan.is_overdue(now),
        )
        return data

    @staticmethod
    def from_row(row: sqlite3.Row) -> "LoanDetails":
        return LoanDetails(
            loan=Loan.from_row(row),
            book_id=row["BookID"],
            title=row["Title"],
            author=row["Author"],
            member_name=row["MemberName"],
        )


class SQLiteBorrowingLedger:
    def __init__(self, db: Database) -> None:
        self.db = db

    def open_loan(self, member_id: str, copy_id: str, borrowed_at: datetime, due_at: datetime,
                  conn: Optional[sqlite3.Connection] = None) -> Loan:
        loan = Loan(generate_borrowing_id(), member_id, copy_id, borrowed_at, due_at)
        with storage_errors("open loan", copy_id), self.db.transaction(conn) as c:
            try:
                c.execute(
                    "INSERT INTO loans (BorrowingID, MemberID, CopyID, BorrowedAt, DueAt) VALUES (?, ?, ?, ?, ?)",
                    (loan.borrowing_id, member_id, copy_id, to_iso(borrowed_at), to_iso(due_at)),
                )
            except sqlite3.IntegrityError as e:
                # uq_loans_open_copy: the copy already has an open loan.
                raise CopyNotAvailable(f"Copy '{copy_id}' already has an open loan", copy_id=copy_id) from e
        return loan

    def close_loan(self, borrowing_id: str, returned_at: datetime,
                   conn: Optional[sqlite3.Connection] = None) -> bool:
        """Set ReturnedAt on an open loan. False if no such open loan exists."""
        with storage_errors("close loan", borrowing_id), self.db.transaction(conn) as c:
            cursor = c.execute(
                "UPDATE loans SET ReturnedAt = ? WHERE BorrowingID = ? AND ReturnedAt IS NULL",
                (to_iso(returned_at), borrowing_id),
            )
            return cursor.rowcount == 1

    def get_loan(self, borrowing_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Loan]:
        with storage_errors("get loan", borrowing_id), self.db.connect(conn) as c:
            row = c.execute("SELECT * FROM loans WHERE BorrowingID = ?", (borrowing_id,)).fetchone()
        return Loan.from_row(row) if row else None

    def find_open_loan(self, borrowing_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Loan]:
        loan = self.get_loan(borrowing_id, conn)
        return loan if loan is not None and loan.is_open else None

    def find_open_loan_for_copy(self, copy_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Loan]:
        with storage_errors("find open loan for copy", copy_id), self.db.connect(conn) as c:
            row = c.execute(
                "SELECT * FROM loans WHERE CopyID = ? AND ReturnedAt IS NULL", (copy_id,)
            ).fetchone()
        return Loan.from_row(row) if row else None

    def active_count(self, member_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
        with storage_errors("count open loans", member_id), self.db.connect(conn) as c:
            return c.execute(
                "SELECT COUNT(*) FROM loans WHERE MemberID = ? AND ReturnedAt IS NULL", (member_id,)
            ).fetchone()[0]

    def active_loans(self, member_id: str) -> List[LoanDetails]:
        """Open loans for a member, soonest due first."""
        with storage_errors("list open loans", member_id), self.db.connect() as c:
            rows = c.execute(
                _DETAIL_SELECT + " WHERE l.MemberID = ? AND l.ReturnedAt IS NULL "
                "ORDER BY l.DueAt ASC, l.BorrowedAt ASC, l.BorrowingID ASC",
                (member_id,),
            ).fetchall()
        return [LoanDetails.from_row(row) for row in rows]

    def open_loans_for_book(self, book_id: str) -> List[LoanDetails]:
        with storage_errors("list open loans for book", book_id), self.db.connect() as c:
            rows = c.execute(
                _DETAIL_SELECT + " WHERE c.BookID = ? AND l.ReturnedAt IS NULL "
                "ORDER BY l.DueAt ASC, l.BorrowingID ASC",
                (book_id,),
            ).fetchall()
        return [LoanDetails.from_row(row) for row in rows]

    def history(self, member_id: str) -> List[LoanDetails]:
        """Every loan a member has had, newest first."""
        with storage_errors("loan history", member_id), self.db.connect() as c:
            rows = c.execute(
                _DETAIL_SELECT + " WHERE l.MemberID = ? ORDER BY l.BorrowedAt DESC, l.BorrowingID DESC",
                (member_id,),
            ).fetchall()
        return [LoanDetails.from_row(row) for row in rows]
