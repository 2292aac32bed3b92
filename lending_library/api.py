import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from .config import configure_logging, settings
from .database import Database
from .errors import (
    BookHasActiveLoans,
    BookNotFound,
    BorrowingLimitExceeded,
    CopyNotAvailable,
    CopyNotFound,
    DuplicateID,
    InvalidInput,
    LibraryError,
    NoCopyAvailable,
    NotAuthorized,
    NotFound,
    StorageFailure,
)
from .inventory import CopyStatus
from .members import Identity
from .search import SearchParams
from .services import Services, build_services

logger = logging.getLogger(__name__)

# Most specific classes first; the first isinstance match wins.
STATUS_CODES = [
    (InvalidInput, 400),
    (NotAuthorized, 403),
    (NotFound, 404),
    (DuplicateID, 409),
    (BookHasActiveLoans, 409),
    (CopyNotAvailable, 409),
    (NoCopyAvailable, 409),
    (BorrowingLimitExceeded, 422),
    (StorageFailure, 503),
]


def status_for(error: LibraryError) -> int:
    for error_type, status in STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


# --- Pydantic Models ---
class BookModel(BaseModel):
    id: str
    author: str
    title: str
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    description: str | None = None


class BookCreateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Generated when omitted")
    author: str
    title: str
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    description: str | None = None
    copies: int = Field(default=0, ge=0, le=100, description="Copies to create with the book")


class BookUpdateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    author: str | None = None
    title: str | None = None
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    description: str | None = None


class CopyStatsModel(BaseModel):
    total: int
    available: int
    borrowed: int


class CopyModel(BaseModel):
    copy_id: str
    book_id: str
    status: str
    created_at: str | None = None
    updated_at: str | None = None


class CopyCreateModel(BaseModel):
    count: int = Field(default=1, ge=1, le=100)


class CopyStatusModel(BaseModel):
    status: str


class BookDetailModel(BookModel):
    copies: CopyStatsModel


class SearchResponseModel(BaseModel):
    books: List[Dict[str, Any]]
    total_count: int
    search_term: str | None = None
    filter_by_genre: str | None = None
    sort_by: str | None = None
    sort_order: str = "asc"


class AvailabilityModel(BaseModel):
    book_id: str
    available: bool
    copies: CopyStatsModel


class StatsModel(BaseModel):
    total_books: int
    unique_authors: int
    total_copies: int
    available_copies: int
    borrowed_copies: int
    genre_distribution: Dict[str, int]


class MemberCreateModel(BaseModel):
    name: str
    email: str
    role: str = "member"
    member_id: str | None = None


class MemberModel(BaseModel):
    member_id: str
    name: str
    email: str
    role: str
    created_at: str | None = None


class BorrowResponseModel(BaseModel):
    success: bool
    borrowing_id: str
    copy_id: str
    book_id: str
    due_date: str
    message: str


class ReturnResponseModel(BaseModel):
    success: bool
    copy_id: str
    borrowing_id: str | None = None
    returned_at: str
    message: str


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
member_header = APIKeyHeader(name="X-Member-ID", auto_error=False)


def get_services(request: Request) -> Services:
    """The app's wired services, built on first use."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(request.app.state.database)
        request.app.state.services = services
    return services


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that validates the administrative API key."""
    if api_key and api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_identity(
    member_id: Optional[str] = Security(member_header),
    services: Services = Depends(get_services),
) -> Identity:
    """Identity of the calling member, as passed on by the session layer."""
    if not member_id or not member_id.strip():
        raise HTTPException(status_code=401, detail="X-Member-ID header is required")
    member = services.members.get(member_id.strip())
    if member is None:
        raise HTTPException(status_code=401, detail=f"Unknown member '{member_id}'")
    return Identity(member.member_id, member.role)


def _copy_stats(services: Services, book_id: str) -> CopyStatsModel:
    services.catalog.require(book_id)
    return CopyStatsModel(**services.inventory.stats_for_book(book_id).to_dict())


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the HTTP API; ``database`` defaults to ``settings.database_file``."""
    configure_logging()
    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.database = database
    app.state.services = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    # --- Public endpoints ---
    @app.get("/health")
    def health():
        return {"status": "ok", "name": settings.app_name, "version": settings.app_version}

    @app.get("/books", response_model=SearchResponseModel)
    def list_books(
        q: Optional[str] = Query(default=None, description="Case-insensitive search text"),
        search_by_id: bool = False,
        search_by_title: bool = False,
        genre: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        availability: bool = False,
        services: Services = Depends(get_services),
    ):
        """Search the catalog. With no parameters, every book in Author, Title order."""
        params = SearchParams(
            search_term=q,
            search_by_id=search_by_id,
            search_by_title=search_by_title,
            filter_by_genre=genre,
            sort_by=sort_by,
            sort_order=sort_order,
            include_availability=availability,
        )
        return services.search.search(params).to_dict()

    @app.get("/books/{book_id}", response_model=BookDetailModel)
    def get_book(book_id: str, services: Services = Depends(get_services)):
        book = services.catalog.require(book_id)
        return {**book.to_dict(), "copies": services.inventory.stats_for_book(book_id).to_dict()}

    @app.get("/books/{book_id}/availability", response_model=AvailabilityModel)
    def book_availability(book_id: str, services: Services = Depends(get_services)):
        stats = _copy_stats(services, book_id)
        return AvailabilityModel(book_id=book_id, available=stats.available > 0, copies=stats)

    @app.get("/genres", response_model=List[str])
    def list_genres(services: Services = Depends(get_services)):
        return services.catalog.list_genres()

    @app.get("/stats", response_model=StatsModel)
    def get_stats(services: Services = Depends(get_services)):
        return services.catalog.statistics()

    # --- Borrowing analytics ---
    @app.get("/analytics/genres")
    def genre_analytics(services: Services = Depends(get_services)):
        return services.analytics.genre_report()

    @app.get("/analytics/authors")
    def author_analytics(
        limit: int = Query(default=30, ge=1, le=100),
        services: Services = Depends(get_services),
    ):
        return services.analytics.author_report(limit)

    @app.get("/analytics/trends")
    def borrowing_trends(
        period: str = Query(default="monthly", description="weekly, monthly or yearly"),
        services: Services = Depends(get_services),
    ):
        return services.analytics.borrowing_trends(period)

    # Declared last so the fixed paths above take precedence.
    @app.get("/analytics/{period}")
    def popular_books(
        period: str,
        limit: Optional[int] = Query(default=None, ge=1, le=100),
        services: Services = Depends(get_services),
    ):
        return services.analytics.popular_books(period, limit)

    # --- Administrative endpoints ---
    @app.post("/books", response_model=BookDetailModel, status_code=201, dependencies=[Depends(get_api_key)])
    def add_book(payload: BookCreateModel, services: Services = Depends(get_services)):
        data = payload.model_dump(exclude={"copies"})
        book = services.catalog.create(data)
        for _ in range(payload.copies):
            services.inventory.create_copy(book.id)
        stats = services.inventory.stats_for_book(book.id)
        return {**book.to_dict(), "copies": stats.to_dict()}

    @app.patch("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
    def update_book(book_id: str, payload: BookUpdateModel, services: Services = Depends(get_services)):
        book = services.catalog.update(book_id, payload.model_dump(exclude_unset=True))
        if book is None:
            raise BookNotFound(book_id)
        return book.to_dict()

    @app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
    def delete_book(book_id: str, services: Services = Depends(get_services)):
        if not services.catalog.delete(book_id):
            raise BookNotFound(book_id)
        return {"success": True, "message": f"Book '{book_id}' deleted"}

    @app.post("/books/{book_id}/copies", response_model=List[CopyModel], status_code=201,
              dependencies=[Depends(get_api_key)])
    def add_copies(book_id: str, payload: Optional[CopyCreateModel] = None,
                   services: Services = Depends(get_services)):
        count = payload.count if payload else 1
        copy_ids = [services.inventory.create_copy(book_id) for _ in range(count)]
        return [services.inventory.get_copy(copy_id).to_dict() for copy_id in copy_ids]

    @app.get("/books/{book_id}/copies", response_model=List[CopyModel], dependencies=[Depends(get_api_key)])
    def list_copies(book_id: str, services: Services = Depends(get_services)):
        return [c.to_dict() for c in services.inventory.list_copies(book_id)]

    @app.put("/copies/{copy_id}/status", response_model=CopyModel, dependencies=[Depends(get_api_key)])
    def set_copy_status(copy_id: str, payload: CopyStatusModel, services: Services = Depends(get_services)):
        if not services.inventory.set_status(copy_id, CopyStatus.parse(payload.status)):
            raise CopyNotFound(copy_id)
        return services.inventory.get_copy(copy_id).to_dict()

    @app.get("/books/{book_id}/loans", dependencies=[Depends(get_api_key)])
    def book_loans(book_id: str, services: Services = Depends(get_services)):
        return [d.to_dict() for d in services.lending.open_loans_for_book(book_id)]

    @app.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
    def register_member(payload: MemberCreateModel, services: Services = Depends(get_services)):
        member = services.members.register(payload.name, payload.email, role=payload.role,
                                           member_id=payload.member_id)
        return member.to_dict()

    @app.post("/books/{book_id}/return", response_model=ReturnResponseModel, dependencies=[Depends(get_api_key)])
    def return_book(book_id: str, services: Services = Depends(get_services)):
        """Return one borrowed copy of a book without naming the loan."""
        return services.lending.return_book(book_id).to_dict()

    # --- Member endpoints ---
    @app.post("/books/{book_id}/borrow", response_model=BorrowResponseModel, status_code=201)
    def borrow_book(book_id: str, identity: Identity = Depends(get_identity),
                    services: Services = Depends(get_services)):
        return services.lending.borrow(book_id, identity.member_id).to_dict()

    @app.post("/loans/{borrowing_id}/return", response_model=ReturnResponseModel)
    def return_loan(borrowing_id: str, identity: Identity = Depends(get_identity),
                    services: Services = Depends(get_services)):
        return services.lending.return_loan(borrowing_id, identity).to_dict()

    @app.get("/me/loans")
    def my_loans(
        history: bool = False,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        if history:
            return [d.to_dict() for d in services.lending.loan_history(identity.member_id)]
        return services.lending.member_summary(identity.member_id).to_dict()

    return app


app = create_app()
