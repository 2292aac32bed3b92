import logging
import sqlite3
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .book import Book
from .database import Database, storage_errors, to_iso, utc_now
from .errors import BookHasActiveLoans, BookNotFound, DuplicateID
from .validators import BookValidator

logger = logging.getLogger(__name__)

# Column names in the books table for each Book attribute.
COLUMNS = {
    "id": "ID",
    "author": "Author",
    "title": "Title",
    "isbn": "ISBN",
    "genre": "Genre",
    "publication_year": "PublicationYear",
    "description": "Description",
}

DEFAULT_ORDER = "Author COLLATE NOCASE ASC, Title COLLATE NOCASE ASC, ID ASC"


def generate_book_id() -> str:
    return f"book-{uuid.uuid4().hex[:12]}"


class SQLiteCatalogStore:
    """Durable record of book metadata."""

    def __init__(self, db: Database, id_factory: Callable[[], str] = generate_book_id) -> None:
        self.db = db
        self.id_factory = id_factory

    # ------------------------- Core operations ------------------------- #
    def create(self, book: Union[Book, Mapping[str, Any]]) -> Book:
        """Add a book. Prevent duplicates by ID; generate an ID when none is given."""
        fields = book.to_dict() if isinstance(book, Book) else dict(book)
        cleaned = BookValidator.validate_new(fields)
        raw_id = fields.get("id")
        book_id = BookValidator.validate_id(raw_id) if raw_id not in (None, "") else self.id_factory()
        new_book = Book(id=book_id, **cleaned)

        now = to_iso(utc_now())
        with storage_errors("create book", book_id), self.db.transaction() as conn:
            if self._exists(conn, book_id):
                raise DuplicateID(f"Book with ID '{book_id}' already exists", book_id=book_id)
            try:
                conn.execute(
                    "INSERT INTO books (ID, Author, Title, ISBN, Genre, PublicationYear, Description, CreatedAt, UpdatedAt) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (new_book.id, new_book.author, new_book.title, new_book.isbn, new_book.genre,
                     new_book.publication_year, new_book.description, now, now),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateID(f"Book with ID '{book_id}' already exists", book_id=book_id) from e
        logger.info(f"Book created: {new_book.id} ({new_book.title})")
        return new_book

    def get(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with storage_errors("get book", book_id), self.db.connect(conn) as c:
            row = c.execute("SELECT * FROM books WHERE ID = ?", (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def require(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Book:
        book = self.get(book_id, conn)
        if book is None:
            raise BookNotFound(book_id)
        return book

    def update(self, book_id: str, fields: Mapping[str, Any]) -> Optional[Book]:
        """Apply only the supplied fields. Returns the updated book or None if not found."""
        cleaned = BookValidator.validate_update(fields)
        assignments = ", ".join(f"{COLUMNS[name]} = ?" for name in cleaned)
        params = list(cleaned.values()) + [to_iso(utc_now()), book_id]

        with storage_errors("update book", book_id), self.db.transaction() as conn:
            cursor = conn.execute(f"UPDATE books SET {assignments}, UpdatedAt = ? WHERE ID = ?", params)
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM books WHERE ID = ?", (book_id,)).fetchone()
        logger.info(f"Book updated: {book_id} ({', '.join(cleaned)})")
        return Book.from_row(row)

    def delete(self, book_id: str) -> bool:
        """Remove a book together with its copies and closed-loan history.

        Rejected with ``BookHasActiveLoans`` while any copy is out on loan.
        """
        with storage_errors("delete book", book_id), self.db.transaction() as conn:
            if not self._exists(conn, book_id):
                return False
            open_loans = conn.execute(
                "SELECT COUNT(*) FROM loans l JOIN copies c ON l.CopyID = c.CopyID "
                "WHERE c.BookID = ? AND l.ReturnedAt IS NULL",
                (book_id,),
            ).fetchone()[0]
            if open_loans:
                logger.warning(f"Refusing to delete book {book_id}: {open_loans} open loan(s)")
                raise BookHasActiveLoans(book_id, open_loans)
            conn.execute("DELETE FROM books WHERE ID = ?", (book_id,))
        logger.info(f"Book deleted: {book_id}")
        return True

    def list_all(self) -> List[Book]:
        with storage_errors("list books"), self.db.connect() as conn:
            rows = conn.execute(f"SELECT * FROM books ORDER BY {DEFAULT_ORDER}").fetchall()
        return [Book.from_row(row) for row in rows]

    def list_genres(self) -> List[str]:
        with storage_errors("list genres"), self.db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT Genre FROM books WHERE Genre IS NOT NULL AND Genre != '' ORDER BY Genre"
            ).fetchall()
        return [row["Genre"] for row in rows]

    def count(self) -> int:
        with storage_errors("count books"), self.db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    def statistics(self) -> Dict[str, Any]:
        """Catalog-wide counts, including copy availability and genre spread."""
        with storage_errors("catalog statistics"), self.db.connect() as conn:
            books = conn.execute(
                "SELECT COUNT(*) AS total, COUNT(DISTINCT Author) AS authors FROM books"
            ).fetchone()
            copies = conn.execute(
                "SELECT COUNT(*) AS total, "
                "COALESCE(SUM(CASE WHEN Status = 'Available' THEN 1 ELSE 0 END), 0) AS available, "
                "COALESCE(SUM(CASE WHEN Status = 'Borrowed' THEN 1 ELSE 0 END), 0) AS borrowed "
                "FROM copies"
            ).fetchone()
            genres = conn.execute(
                "SELECT Genre, COUNT(*) AS n FROM books WHERE Genre IS NOT NULL AND Genre != '' "
                "GROUP BY Genre ORDER BY Genre"
            ).fetchall()
        return {
            "total_books": books["total"],
            "unique_authors": books["authors"],
            "total_copies": copies["total"],
            "available_copies": copies["available"],
            "borrowed_copies": copies["borrowed"],
            "genre_distribution": {row["Genre"]: row["n"] for row in genres},
        }

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _exists(conn: sqlite3.Connection, book_id: str) -> bool:
        return conn.execute("SELECT 1 FROM books WHERE ID = ?", (book_id,)).fetchone() is not None
