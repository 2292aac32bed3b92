from typing import Any, Dict, Mapping, Optional

from .errors import InvalidInput

MAX_ID_LENGTH = 100
MAX_AUTHOR_LENGTH = 255
MAX_TITLE_LENGTH = 500
MAX_ISBN_LENGTH = 20
MAX_GENRE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MIN_PUBLICATION_YEAR = 1000
MAX_PUBLICATION_YEAR = 2030

BOOK_TEXT_LIMITS = {
    "author": MAX_AUTHOR_LENGTH,
    "title": MAX_TITLE_LENGTH,
    "isbn": MAX_ISBN_LENGTH,
    "genre": MAX_GENRE_LENGTH,
    "description": MAX_DESCRIPTION_LENGTH,
}
REQUIRED_TEXT = ("author", "title")
UPDATABLE_FIELDS = tuple(BOOK_TEXT_LIMITS) + ("publication_year",)
CREATABLE_FIELDS = ("id",) + UPDATABLE_FIELDS


class BookValidator:
    """Field-level checks for catalog entries. Everything here runs before a write."""

    @staticmethod
    def _text(name: str, value: Any, required: bool) -> Optional[str]:
        if value is None:
            if required:
                raise InvalidInput(f"{name.capitalize()} is required", field=name)
            return None
        if not isinstance(value, str):
            raise InvalidInput(f"{name.capitalize()} must be a string", field=name)
        cleaned = value.strip()
        if required and not cleaned:
            raise InvalidInput(f"{name.capitalize()} cannot be empty", field=name)
        limit = BOOK_TEXT_LIMITS[name]
        if len(cleaned) > limit:
            raise InvalidInput(f"{name.capitalize()} cannot exceed {limit} characters", field=name)
        return cleaned

    @staticmethod
    def _year(value: Any) -> Optional[int]:
        if value is None:
            return None
        # bool is an int subclass; True is not a year.
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidInput("Publication year must be an integer", field="publication_year")
        if not MIN_PUBLICATION_YEAR <= value <= MAX_PUBLICATION_YEAR:
            raise InvalidInput(
                f"Publication year must be between {MIN_PUBLICATION_YEAR} and {MAX_PUBLICATION_YEAR}",
                field="publication_year",
            )
        return value

    @staticmethod
    def validate_id(book_id: Any) -> str:
        if not isinstance(book_id, str) or not book_id.strip():
            raise InvalidInput("Book ID must be a non-empty string", field="id")
        cleaned = book_id.strip()
        if len(cleaned) > MAX_ID_LENGTH:
            raise InvalidInput(f"Book ID cannot exceed {MAX_ID_LENGTH} characters", field="id")
        return cleaned

    @classmethod
    def validate_new(cls, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Return trimmed fields for a new book, or raise ``InvalidInput``."""
        unknown = set(fields) - set(CREATABLE_FIELDS)
        if unknown:
            raise InvalidInput(f"Unknown field(s): {', '.join(sorted(unknown))}")
        cleaned: Dict[str, Any] = {}
        for name in BOOK_TEXT_LIMITS:
            required = name in REQUIRED_TEXT
            text = cls._text(name, fields.get(name), required=required)
            # Optional blanks are stored as NULL so genre filtering never sees "".
            cleaned[name] = text if required else (text or None)
        cleaned["publication_year"] = cls._year(fields.get("publication_year"))
        return cleaned

    @classmethod
    def validate_update(cls, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Return trimmed values for the supplied fields only."""
        if not fields:
            raise InvalidInput("At least one field must be provided for update")
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidInput(f"Unknown field(s): {', '.join(sorted(unknown))}")
        cleaned: Dict[str, Any] = {}
        for name, value in fields.items():
            if name == "publication_year":
                cleaned[name] = cls._year(value)
            elif name in REQUIRED_TEXT:
                cleaned[name] = cls._text(name, value, required=True)
            else:
                cleaned[name] = cls._text(name, value, required=False) or None
        return cleaned


class MemberValidator:
    @staticmethod
    def validate_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInput("Name is required", field="name")
        return name.strip()

    @staticmethod
    def validate_email(email: Any) -> str:
        if not isinstance(email, str) or "@" not in email.strip():
            raise InvalidInput("A valid email address is required", field="email")
        return email.strip().lower()

    @staticmethod
    def validate_role(role: Any) -> str:
        if role not in ("member", "admin"):
            raise InvalidInput("Role must be 'member' or 'admin'", field="role")
        return role
