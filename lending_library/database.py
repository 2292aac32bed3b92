import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from .errors import InvalidInput, LibraryError, StorageFailure

logger = logging.getLogger(__name__)

COPY_STATUSES = ("Available", "Borrowed", "Damaged", "Lost", "Reserved")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS books (
        ID TEXT PRIMARY KEY,
        Author TEXT NOT NULL,
        Title TEXT NOT NULL,
        ISBN TEXT,
        Genre TEXT,
        PublicationYear INTEGER,
        Description TEXT,
        CreatedAt TEXT NOT NULL,
        UpdatedAt TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS copies (
        CopyID TEXT PRIMARY KEY,
        BookID TEXT NOT NULL,
        Status TEXT NOT NULL DEFAULT 'Available'
            CHECK (Status IN ({", ".join(repr(s) for s in COPY_STATUSES)})),
        CreatedAt TEXT NOT NULL,
        UpdatedAt TEXT NOT NULL,
        FOREIGN KEY (BookID) REFERENCES books(ID) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS members (
        MemberID TEXT PRIMARY KEY,
        Name TEXT NOT NULL,
        Email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        Role TEXT NOT NULL DEFAULT 'member' CHECK (Role IN ('admin', 'member')),
        CreatedAt TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS loans (
        BorrowingID TEXT PRIMARY KEY,
        MemberID TEXT NOT NULL,
        CopyID TEXT NOT NULL,
        BorrowedAt TEXT NOT NULL,
        DueAt TEXT NOT NULL,
        ReturnedAt TEXT,
        FOREIGN KEY (MemberID) REFERENCES members(MemberID),
        FOREIGN KEY (CopyID) REFERENCES copies(CopyID) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_books_author_title ON books(Author, Title)",
    "CREATE INDEX IF NOT EXISTS idx_books_genre ON books(Genre)",
    "CREATE INDEX IF NOT EXISTS idx_copies_book_status ON copies(BookID, Status)",
    "CREATE INDEX IF NOT EXISTS idx_loans_member_open ON loans(MemberID) WHERE ReturnedAt IS NULL",
    # At most one open loan per copy, whatever the application does.
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_loans_open_copy ON loans(CopyID) WHERE ReturnedAt IS NULL",
]


class Database:
    """Owns the SQLite file and hands out connections and transactions.

    Stores receive a ``Database`` in their constructor. Methods that must run
    inside a caller's transaction accept that transaction's connection and
    join it instead of opening their own.
    """

    def __init__(self, path: str, timeout: float = 5.0) -> None:
        # Every connection to ":memory:" (or "") is a separate empty database,
        # so a store that opens one connection per operation cannot use it.
        if path in (":memory:", ""):
            raise InvalidInput("In-memory databases are not supported; use a file path", field="path")
        self.path = path
        self.timeout = timeout

    def _open(self) -> sqlite3.Connection:
        # isolation_level=None: no implicit BEGIN, transactions are explicit.
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    @contextmanager
    def connect(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Yield a connection for reads; reuse ``conn`` when one is supplied."""
        if conn is not None:
            yield conn
            return
        try:
            own = self._open()
        except sqlite3.Error as exc:
            raise StorageFailure("connect", self.path, exc) from exc
        try:
            yield own
        finally:
            own.close()

    @contextmanager
    def transaction(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Run the block atomically under the database write lock.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so a
        read-check-write sequence inside the block cannot interleave with
        another writer. Any exception rolls the whole block back.
        """
        if conn is not None:
            yield conn
            return
        with self.connect() as own:
            try:
                own.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageFailure("begin transaction", self.path, exc) from exc
            try:
                yield own
            except BaseException:
                own.rollback()
                raise
            else:
                try:
                    own.commit()
                except sqlite3.Error as exc:
                    own.rollback()
                    raise StorageFailure("commit", self.path, exc) from exc

    def initialize(self) -> None:
        """Create tables and indexes if they do not exist yet."""
        with self.connect() as conn:
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
                for statement in SCHEMA:
                    conn.execute(statement)
            except sqlite3.Error as exc:
                raise StorageFailure("initialize", self.path, exc) from exc
        logger.info(f"Database initialized at {self.path}")


def _casefold(value):
    # SQLite's LIKE folds ASCII only; search compares Unicode-casefolded text.
    return value.casefold() if isinstance(value, str) else value


@contextmanager
def storage_errors(operation: str, entity_id: Optional[str] = None) -> Iterator[None]:
    """Re-raise driver errors as ``StorageFailure`` with operation context."""
    try:
        yield
    except LibraryError:
        raise
    except sqlite3.Error as exc:
        logger.error(f"{operation} failed for {entity_id or '-'}: {exc}", exc_info=True)
        raise StorageFailure(operation, entity_id, exc) from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
