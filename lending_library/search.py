"""Composable catalog queries: free-text search, genre filter, sort.

A query is a tree of predicates ANDed together and compiled to one
parameterised SQL statement. A search term adds a case-insensitive
substring predicate over the requested fields; a genre filter adds an
exact equality predicate (genres are trimmed at write time, never at
filter time). No predicates means the whole catalog.

Ordering: an explicit ``sort_by`` orders by that column in the requested
direction. Without one (or with an unrecognised key) results fall back to
the catalog default, Author then Title ascending. Every ordering ends with
``ID ASC`` so equal keys still come back in a fixed order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .book import Book
from .catalog import DEFAULT_ORDER
from .database import Database, storage_errors
from .errors import InvalidInput
from .inventory import CopyStats

logger = logging.getLogger(__name__)

ALL_TEXT_COLUMNS = ("ID", "Title", "Author", "Genre", "ISBN", "Description")

SORT_COLUMNS = {
    "id": "ID",
    "title": "Title COLLATE NOCASE",
    "author": "Author COLLATE NOCASE",
    "genre": "Genre COLLATE NOCASE",
    "publicationYear": "PublicationYear",
}
SORT_ALIASES = {"publication_year": "publicationYear"}
SORT_ORDERS = ("asc", "desc")

# camelCase spellings used by JSON clients, plus short query-string names.
_PARAM_ALIASES = {
    "searchTerm": "search_term",
    "q": "search_term",
    "searchById": "search_by_id",
    "searchByTitle": "search_by_title",
    "filterByGenre": "filter_by_genre",
    "genre": "filter_by_genre",
    "sortBy": "sort_by",
    "sortOrder": "sort_order",
    "includeAvailability": "include_availability",
}


_BOOL_PARAMS = ("search_by_id", "search_by_title", "include_availability")
_TRUE_STRINGS = ("true", "1", "yes")
_FALSE_STRINGS = ("false", "0", "no", "")


def _as_bool(name: str, value: Any) -> bool:
    # Query strings and form data deliver flags as text; "false" must stay false.
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    if value is None:
        return False
    raise InvalidInput(f"Search parameter '{name}' must be true or false", field=name)


class Predicate:
    def to_sql(self) -> Tuple[str, List[Any]]:
        raise NotImplementedError


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class Contains(Predicate):
    """Case-insensitive substring match on any of ``columns``.

    Both sides go through the connection's ``casefold`` function, so
    non-ASCII letters match regardless of case ("émile" finds "Émile").
    """

    columns: Sequence[str]
    term: str

    def to_sql(self) -> Tuple[str, List[Any]]:
        pattern = f"%{_escape_like(self.term.casefold())}%"
        clauses = [f"casefold(b.{column}) LIKE ? ESCAPE '\\'" for column in self.columns]
        return "(" + " OR ".join(clauses) + ")", [pattern] * len(self.columns)


@dataclass
class Equals(Predicate):
    column: str
    value: Any

    def to_sql(self) -> Tuple[str, List[Any]]:
        return f"b.{self.column} = ?", [self.value]


@dataclass
class All(Predicate):
    predicates: List[Predicate] = field(default_factory=list)

    def to_sql(self) -> Tuple[str, List[Any]]:
        if not self.predicates:
            return "1 = 1", []
        parts, params = [], []
        for predicate in self.predicates:
            sql, values = predicate.to_sql()
            parts.append(sql)
            params.extend(values)
        return " AND ".join(parts), params


@dataclass
class SearchParams:
    search_term: Optional[str] = None
    search_by_id: bool = False
    search_by_title: bool = False
    filter_by_genre: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    include_availability: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "SearchParams":
        merged: Dict[str, Any] = {}
        for key, value in {**(data or {}), **overrides}.items():
            name = _PARAM_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise InvalidInput(f"Unknown search parameter '{key}'", field=key)
            merged[name] = value
        return cls(**merged)

    def __post_init__(self) -> None:
        for name in _BOOL_PARAMS:
            setattr(self, name, _as_bool(name, getattr(self, name)))

    def predicate(self) -> All:
        tree = All()
        term = self.normalized_term()
        if term:
            if self.search_by_id and self.search_by_title:
                columns: Sequence[str] = ("ID", "Title")
            elif self.search_by_id:
                columns = ("ID",)
            elif self.search_by_title:
                columns = ("Title",)
            else:
                columns = ALL_TEXT_COLUMNS
            tree.predicates.append(Contains(columns, term))
        if self.filter_by_genre not in (None, ""):
            if not isinstance(self.filter_by_genre, str):
                raise InvalidInput("Genre filter must be a string", field="filter_by_genre")
            tree.predicates.append(Equals("Genre", self.filter_by_genre))
        return tree

    def normalized_term(self) -> Optional[str]:
        if self.search_term is None:
            return None
        if not isinstance(self.search_term, str):
            raise InvalidInput("Search term must be a string", field="search_term")
        return self.search_term.strip() or None

    def normalized_order(self) -> str:
        if self.sort_order in (None, ""):
            return "asc"
        if self.sort_order not in SORT_ORDERS:
            raise InvalidInput("Invalid sort order. Must be either asc or desc", field="sort_order")
        return self.sort_order

    def normalized_sort(self) -> Optional[str]:
        """The sort key that will be applied, or None for the default order."""
        if self.sort_by in (None, ""):
            return None
        key = SORT_ALIASES.get(self.sort_by, self.sort_by)
        if key not in SORT_COLUMNS:
            logger.warning(f"Unknown sort key '{self.sort_by}', using default order")
            return None
        return key


@dataclass
class SearchResult:
    books: List[Book]
    total_count: int
    search_term: Optional[str] = None
    filter_by_genre: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: str = "asc"
    availability: Optional[Dict[str, CopyStats]] = None

    def to_dict(self) -> dict:
        books = []
        for book in self.books:
            data = book.to_dict()
            if self.availability is not None:
                data["copies"] = self.availability[book.id].to_dict()
            books.append(data)
        return {
            "books": books,
            "total_count": self.total_count,
            "search_term": self.search_term,
            "filter_by_genre": self.filter_by_genre,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order,
        }


class CatalogSearchEngine:
    def __init__(self, db: Database) -> None:
        self.db = db

    def search(self, params: Optional[SearchParams] = None, **kwargs: Any) -> SearchResult:
        """Run a query; ``total_count`` always equals ``len(books)``."""
        if params is None:
            params = SearchParams.from_mapping(kwargs)
        elif kwargs:
            raise InvalidInput("Pass either SearchParams or keyword arguments, not both")

        # Validate everything before touching the store.
        where, values = params.predicate().to_sql()
        sort_key = params.normalized_sort()
        order = params.normalized_order()
        sql = self._compile(where, sort_key, order, params.include_availability)

        with storage_errors("search books"), self.db.connect() as conn:
            rows = conn.execute(sql, values).fetchall()

        books = [Book.from_row(row) for row in rows]
        availability = None
        if params.include_availability:
            availability = {
                row["ID"]: CopyStats(total=row["TotalCopies"], available=row["AvailableCopies"],
                                     borrowed=row["BorrowedCopies"])
                for row in rows
            }
        return SearchResult(
            books=books,
            total_count=len(books),
            search_term=params.normalized_term(),
            filter_by_genre=params.filter_by_genre or None,
            sort_by=sort_key,
            sort_order=order if sort_key else "asc",
            availability=availability,
        )

    def search_simple(self, search_term: str, search_by_id: bool = False, search_by_title: bool = False) -> List[Book]:
        if not isinstance(search_term, str) or not search_term.strip():
            raise InvalidInput("Search term must be a non-empty string", field="search_term")
        params = SearchParams(search_term=search_term, search_by_id=search_by_id, search_by_title=search_by_title)
        return self.search(params).books

    def sorted_books(self, sort_by: str, sort_order: str = "asc") -> List[Book]:
        return self.search(SearchParams(sort_by=sort_by, sort_order=sort_order)).books

    def books_by_genre(self, genre: str, sort_by: Optional[str] = None, sort_order: str = "asc") -> List[Book]:
        if not isinstance(genre, str) or not genre.strip():
            raise InvalidInput("Genre must be a non-empty string", field="genre")
        return self.search(SearchParams(filter_by_genre=genre, sort_by=sort_by, sort_order=sort_order)).books

    @staticmethod
    def _compile(where: str, sort_key: Optional[str], order: str, with_availability: bool) -> str:
        if sort_key is None:
            order_by = DEFAULT_ORDER
        elif sort_key == "id":
            order_by = f"ID {order.upper()}"
        else:
            order_by = f"{SORT_COLUMNS[sort_key]} {order.upper()}, ID ASC"

        if not with_availability:
            return f"SELECT b.* FROM books b WHERE {where} ORDER BY {order_by}"
        return (
            "SELECT b.*, "
            "COALESCE(s.TotalCopies, 0) AS TotalCopies, "
            "COALESCE(s.AvailableCopies, 0) AS AvailableCopies, "
            "COALESCE(s.BorrowedCopies, 0) AS BorrowedCopies "
            "FROM books b LEFT JOIN ("
            "  SELECT BookID, COUNT(*) AS TotalCopies, "
            "  SUM(CASE WHEN Status = 'Available' THEN 1 ELSE 0 END) AS AvailableCopies, "
            "  SUM(CASE WHEN Status = 'Borrowed' THEN 1 ELSE 0 END) AS BorrowedCopies "
            "  FROM copies GROUP BY BookID"
            f") s ON s.BookID = b.ID WHERE {where} ORDER BY {order_by}"
        )
