"""Typed failures raised by the catalog, inventory and lending layers.

Every error carries a stable ``code`` plus an optional ``context`` mapping
(operation name, entity ids) so the presentation layer can explain why an
operation failed without parsing messages.
"""

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """Base exception for lending library errors."""

    code = "library_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "code": self.code, "detail": self.message, "context": self.context}


class InvalidInput(LibraryError, ValueError):
    """Malformed or out-of-range input, rejected before any write."""

    code = "invalid_input"


class NotFound(LibraryError, LookupError):
    code = "not_found"


class BookNotFound(NotFound):
    code = "book_not_found"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book '{book_id}' not found", book_id=book_id)


class CopyNotFound(NotFound):
    code = "copy_not_found"

    def __init__(self, copy_id: str) -> None:
        super().__init__(f"Copy '{copy_id}' not found", copy_id=copy_id)


class MemberNotFound(NotFound):
    code = "member_not_found"

    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member '{member_id}' not found", member_id=member_id)


class LoanNotFound(NotFound):
    """No open loan with the given borrowing id."""

    code = "loan_not_found"

    def __init__(self, borrowing_id: str) -> None:
        super().__init__(f"No open loan '{borrowing_id}'", borrowing_id=borrowing_id)


class NoBorrowedCopy(NotFound):
    """Simplified return path found nothing borrowed for the book."""

    code = "no_borrowed_copy"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"No borrowed copies found for book '{book_id}'", book_id=book_id)


class DuplicateID(LibraryError):
    code = "duplicate_id"


class CopyNotAvailable(LibraryError):
    """The copy is not in a state that allows the requested transition."""

    code = "copy_not_available"


class NoCopyAvailable(LibraryError):
    code = "no_copy_available"

    def __init__(self, book_id: str) -> None:
        super().__init__(f"No available copies for book '{book_id}'", book_id=book_id)


class BorrowingLimitExceeded(LibraryError):
    code = "borrowing_limit_exceeded"

    def __init__(self, member_id: str, limit: int) -> None:
        super().__init__(
            f"Member '{member_id}' has reached the maximum borrowing limit of {limit} books",
            member_id=member_id,
            limit=limit,
        )


class BookHasActiveLoans(LibraryError):
    code = "book_has_active_loans"

    def __init__(self, book_id: str, open_loans: int) -> None:
        super().__init__(
            f"Book '{book_id}' cannot be deleted while {open_loans} loan(s) are open",
            book_id=book_id,
            open_loans=open_loans,
        )


class NotAuthorized(LibraryError):
    """The established identity may not perform the operation."""

    code = "not_authorized"


class StorageFailure(LibraryError):
    """Wraps an underlying persistence error with operation context."""

    code = "storage_failure"

    def __init__(self, operation: str, entity_id: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        detail = f"Storage failure during {operation}"
        if entity_id:
            detail += f" ({entity_id})"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail, operation=operation, entity_id=entity_id)
