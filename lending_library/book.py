from __future__ import annotations

from typing import Any, Mapping


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip()


class Book:
    """A catalog title, independent of how many physical copies exist."""

    FIELDS = ("id", "author", "title", "isbn", "genre", "publication_year", "description")

    def __init__(self, id: str, author: str, title: str, isbn: str | None = None, genre: str | None = None,
                 publication_year: int | None = None, description: str | None = None) -> None:
        self.id = id.strip()
        self.author = author.strip()
        self.title = title.strip()
        self.isbn = _clean(isbn) or None
        self.genre = _clean(genre) or None
        self.publication_year = publication_year
        self.description = _clean(description) or None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.id})"

    def __repr__(self) -> str:
        return f"Book(id={self.id!r}, title={self.title!r}, author={self.author!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "title": self.title,
            "isbn": self.isbn,
            "genre": self.genre,
            "publication_year": self.publication_year,
            "description": self.description,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Book":
        return Book(
            id=data["id"],
            author=data["author"],
            title=data["title"],
            isbn=data.get("isbn"),
            genre=data.get("genre"),
            publication_year=data.get("publication_year"),
            description=data.get("description"),
        )

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Book":
        """Build a Book from a ``books`` table row (column names as stored)."""
        return Book(
            id=row["ID"],
            author=row["Author"],
            title=row["Title"],
            isbn=row["ISBN"],
            genre=row["Genre"],
            publication_year=row["PublicationYear"],
            description=row["Description"],
        )
