"""Physical copies of catalog titles and their availability state.

Only two states take part in lending: ``Available`` and ``Borrowed``. The
remaining statuses (``Damaged``, ``Lost``, ``Reserved``) are maintenance
states that take a copy out of circulation until it is set back to
``Available``.

The ``Available`` <-> ``Borrowed`` edges are driven exclusively through
:meth:`SQLiteCopyInventory.transition`, a compare-and-swap on the status
column that the lending service runs inside its own transaction.
"""

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .database import Database, from_iso, storage_errors, to_iso, utc_now
from .errors import BookNotFound, CopyNotAvailable, InvalidInput

logger = logging.getLogger(__name__)

_COPY_ID_PATTERN = re.compile(r"^COPY-(\d+)")


class CopyStatus(str, Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    DAMAGED = "Damaged"
    LOST = "Lost"
    RESERVED = "Reserved"

    @classmethod
    def parse(cls, value: str) -> "CopyStatus":
        for status in cls:
            if status.value.lower() == str(value).strip().lower():
                return status
        allowed = ", ".join(s.value for s in cls)
        raise InvalidInput(f"Unknown copy status '{value}'. Allowed: {allowed}", field="status")


@dataclass
class Copy:
    copy_id: str
    book_id: str
    status: CopyStatus = CopyStatus.AVAILABLE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.status is CopyStatus.AVAILABLE

    def to_dict(self) -> dict:
        return {
            "copy_id": self.copy_id,
            "book_id": self.book_id,
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Copy":
        return Copy(
            copy_id=row["CopyID"],
            book_id=row["BookID"],
            status=CopyStatus(row["Status"]),
            created_at=from_iso(row["CreatedAt"]),
            updated_at=from_iso(row["UpdatedAt"]),
        )


@dataclass
class CopyStats:
    total: int = 0
    available: int = 0
    borrowed: int = 0

    def to_dict(self) -> dict:
        return {"total": self.total, "available": self.available, "borrowed": self.borrowed}


class SQLiteCopyInventory:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create_copy(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> str:
        """Attach a new ``Available`` copy to an existing book and return its id."""
        with storage_errors("create copy", book_id), self.db.transaction(conn) as c:
            if c.execute("SELECT 1 FROM books WHERE ID = ?", (book_id,)).fetchone() is None:
                raise BookNotFound(book_id)
            copy_id = self._next_copy_id(c)
            now = to_iso(utc_now())
            c.execute(
                "INSERT INTO copies (CopyID, BookID, Status, CreatedAt, UpdatedAt) VALUES (?, ?, ?, ?, ?)",
                (copy_id, book_id, CopyStatus.AVAILABLE.value, now, now),
            )
        logger.info(f"Copy {copy_id} created for book {book_id}")
        return copy_id

    def get_copy(self, copy_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Copy]:
        with storage_errors("get copy", copy_id), self.db.connect(conn) as c:
            row = c.execute("SELECT * FROM copies WHERE CopyID = ?", (copy_id,)).fetchone()
        return Copy.from_row(row) if row else None

    def list_copies(self, book_id: str) -> List[Copy]:
        with storage_errors("list copies", book_id), self.db.connect() as c:
            if c.execute("SELECT 1 FROM books WHERE ID = ?", (book_id,)).fetchone() is None:
                raise BookNotFound(book_id)
            rows = c.execute("SELECT * FROM copies WHERE BookID = ? ORDER BY CopyID", (book_id,)).fetchall()
        return [Copy.from_row(row) for row in rows]

    def find_available_copy(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Copy]:
        return self._find_by_status(book_id, CopyStatus.AVAILABLE, conn)

    def find_borrowed_copy(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Copy]:
        return self._find_by_status(book_id, CopyStatus.BORROWED, conn)

    def transition(self, copy_id: str, expected: CopyStatus, new: CopyStatus,
                   conn: Optional[sqlite3.Connection] = None) -> bool:
        """Move ``copy_id`` from ``expected`` to ``new``; False if it was not in ``expected``."""
        with storage_errors("copy transition", copy_id), self.db.transaction(conn) as c:
            cursor = c.execute(
                "UPDATE copies SET Status = ?, UpdatedAt = ? WHERE CopyID = ? AND Status = ?",
                (new.value, to_iso(utc_now()), copy_id, expected.value),
            )
            return cursor.rowcount == 1

    def set_status(self, copy_id: str, status: CopyStatus) -> bool:
        """Maintenance status change. Returns False when the copy does not exist.

        ``Borrowed`` is only ever set by opening a loan, and a copy that is out
        on loan can only come back through a return.
        """
        status = CopyStatus.parse(status) if not isinstance(status, CopyStatus) else status
        if status is CopyStatus.BORROWED:
            raise InvalidInput("Copies become Borrowed only by opening a loan", copy_id=copy_id)

        with storage_errors("set copy status", copy_id), self.db.transaction() as c:
            row = c.execute("SELECT Status FROM copies WHERE CopyID = ?", (copy_id,)).fetchone()
            if row is None:
                return False
            open_loan = c.execute(
                "SELECT 1 FROM loans WHERE CopyID = ? AND ReturnedAt IS NULL", (copy_id,)
            ).fetchone()
            if row["Status"] == CopyStatus.BORROWED.value or open_loan:
                raise CopyNotAvailable(
                    f"Copy '{copy_id}' is out on loan and must be returned first", copy_id=copy_id
                )
            c.execute(
                "UPDATE copies SET Status = ?, UpdatedAt = ? WHERE CopyID = ?",
                (status.value, to_iso(utc_now()), copy_id),
            )
        logger.info(f"Copy {copy_id} status: {row['Status']} -> {status.value}")
        return True

    def stats_for_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> CopyStats:
        with storage_errors("copy statistics", book_id), self.db.connect(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) AS total, "
                "COALESCE(SUM(CASE WHEN Status = 'Available' THEN 1 ELSE 0 END), 0) AS available, "
                "COALESCE(SUM(CASE WHEN Status = 'Borrowed' THEN 1 ELSE 0 END), 0) AS borrowed "
                "FROM copies WHERE BookID = ?",
                (book_id,),
            ).fetchone()
        return CopyStats(total=row["total"], available=row["available"], borrowed=row["borrowed"])

    # ------------------------- Utilities ------------------------- #
    def _find_by_status(self, book_id: str, status: CopyStatus,
                        conn: Optional[sqlite3.Connection]) -> Optional[Copy]:
        with storage_errors(f"find {status.value.lower()} copy", book_id), self.db.connect(conn) as c:
            row = c.execute(
                "SELECT * FROM copies WHERE BookID = ? AND Status = ? ORDER BY CopyID LIMIT 1",
                (book_id, status.value),
            ).fetchone()
        return Copy.from_row(row) if row else None

    @staticmethod
    def _next_copy_id(conn: sqlite3.Connection) -> str:
        # Must run inside the write transaction so two creators never pick the same number.
        highest = 0
        for row in conn.execute("SELECT CopyID FROM copies WHERE CopyID LIKE 'COPY-%'"):
            match = _COPY_ID_PATTERN.match(row["CopyID"])
            if match:
                highest = max(highest, int(match.group(1)))
        return f"COPY-{highest + 1:03d}"
