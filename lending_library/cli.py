import json
import logging
import os
import subprocess
import sys
from functools import wraps
from typing import Dict, Optional

import typer
from rich.console import Console

from .analytics import AUTHOR_REPORT_LIMIT
from .config import configure_logging, settings
from .database import Database
from .errors import BookNotFound, CopyNotFound, LibraryError
from .inventory import CopyStatus
from .members import Identity
from .search import SearchParams
from .seed import seed_demo_data
from .services import Services, build_services
from .ui_helpers import (
    get_output_mode,
    print_book_detail,
    print_book_list,
    print_copies,
    print_loans,
    print_report,
    print_stats_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

APP_NAME = "Lending Library CLI"

console = Console()

# --- Typer CLI Application ---
app = typer.Typer(help=APP_NAME)

# Database path chosen by the global --db option; None means settings.database_file.
_state: Dict[str, Optional[str]] = {"db": None}
_services: Dict[str, Services] = {}


def get_services() -> Services:
    """Services bundle for the active database file, built once per path."""
    path = _state["db"] or settings.database_file
    if path not in _services:
        _services[path] = build_services(Database(path, timeout=settings.database_timeout))
    return _services[path]


def handle_errors(func):
    """Print library errors as 'Error: <message>' and exit with status 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            logger.debug(f"{func.__name__} failed: {e.code}")
            print(f"Error: {e.message}")
            raise typer.Exit(code=1)

    return wrapper


def _emit(data: dict, message: str) -> None:
    if get_output_mode() == "json":
        print(json.dumps(data, ensure_ascii=False))
    else:
        print(message)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Global CLI options (output mode, database file)."""
    configure_logging("DEBUG" if verbose else "WARNING")
    if output:
        set_output_mode(output)
    _state["db"] = db


# ------------------------- Catalog ------------------------- #
@app.command("init-db")
@handle_errors
def cli_init_db():
    """Create the database schema if it does not exist."""
    services = get_services()
    print(f"Database initialized at {services.db.path}")


@app.command("seed")
@handle_errors
def cli_seed():
    """Load the demo catalog into an empty database."""
    counts = seed_demo_data(get_services())
    if counts["books"] == 0:
        print("Catalog already has books; nothing seeded.")
    else:
        print(f"Seeded {counts['books']} books, {counts['copies']} copies and {counts['members']} members.")


@app.command("add")
@handle_errors
def cli_add(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Book author"),
    book_id: Optional[str] = typer.Option(None, "--id", help="Book ID (generated when omitted)"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g"),
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Publication year"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    copies: int = typer.Option(0, "--copies", "-c", min=0, help="Number of copies to create"),
):
    """Add a book to the catalog, optionally with copies."""
    services = get_services()
    book = services.catalog.create({
        "id": book_id,
        "title": title,
        "author": author,
        "isbn": isbn,
        "genre": genre,
        "publication_year": year,
        "description": description,
    })
    copy_ids = [services.inventory.create_copy(book.id) for _ in range(copies)]
    _emit(
        {**book.to_dict(), "copy_ids": copy_ids},
        f"Successfully added: {book.title} by {book.author} ({book.id}, {len(copy_ids)} copies)",
    )


@app.command("find")
@handle_errors
def cli_find(book_id: str):
    """Show a book with its copy availability."""
    details = get_services().lending.book_details(book_id)
    print_book_detail(details["book"], details["stats"].to_dict())


@app.command("update")
@handle_errors
def cli_update(
    book_id: str,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g"),
    year: Optional[int] = typer.Option(None, "--year", "-y"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
):
    """Update only the given fields of a book."""
    fields = {
        "title": title,
        "author": author,
        "isbn": isbn,
        "genre": genre,
        "publication_year": year,
        "description": description,
    }
    book = get_services().catalog.update(book_id, {k: v for k, v in fields.items() if v is not None})
    if book is None:
        raise BookNotFound(book_id)
    _emit(book.to_dict(), f"Updated: {book.title} by {book.author}")


@app.command("remove")
@handle_errors
def cli_remove(book_id: str):
    """Delete a book with its copies. Refused while loans are open."""
    if not get_services().catalog.delete(book_id):
        raise BookNotFound(book_id)
    print(f"Book with ID {book_id} has been removed.")


@app.command("list")
@handle_errors
def cli_list(
    sort_by: Optional[str] = typer.Option(None, "--sort-by", "-s", help="id | title | author | genre | publicationYear"),
    order: str = typer.Option("asc", "--order", help="asc | desc"),
):
    """List all books (Author, Title order unless --sort-by is given)."""
    services = get_services()
    books = services.search.sorted_books(sort_by, order) if sort_by else services.catalog.list_all()
    print_book_list(books)


@app.command("genres")
@handle_errors
def cli_genres():
    """List distinct genres."""
    genres = get_services().catalog.list_genres()
    if get_output_mode() == "json":
        print(json.dumps(genres, ensure_ascii=False))
    elif not genres:
        print("No genres in library.")
    else:
        for genre in genres:
            print(genre)


@app.command("search")
@handle_errors
def cli_search(
    term: Optional[str] = typer.Argument(None, help="Case-insensitive search text"),
    by_id: bool = typer.Option(False, "--id", help="Match the book ID"),
    by_title: bool = typer.Option(False, "--title", help="Match the title"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Exact genre filter"),
    sort_by: Optional[str] = typer.Option(None, "--sort-by", "-s"),
    order: Optional[str] = typer.Option(None, "--order"),
    availability: bool = typer.Option(False, "--availability", help="Include copy counts"),
):
    """Search the catalog."""
    params = SearchParams(
        search_term=term,
        search_by_id=by_id,
        search_by_title=by_title,
        filter_by_genre=genre,
        sort_by=sort_by,
        sort_order=order,
        include_availability=availability,
    )
    result = get_services().search.search(params)
    if get_output_mode() == "json":
        print(json.dumps(result.to_dict(), ensure_ascii=False))
        return
    print_book_list(result.books, empty_message="No books matched.")
    if result.books:
        print(f"{result.total_count} result(s)")


# ------------------------- Copies ------------------------- #
@app.command("add-copy")
@handle_errors
def cli_add_copy(book_id: str, count: int = typer.Option(1, "--count", "-n", min=1)):
    """Create new Available copies of a book."""
    inventory = get_services().inventory
    copy_ids = [inventory.create_copy(book_id) for _ in range(count)]
    _emit({"book_id": book_id, "copy_ids": copy_ids}, f"Added {len(copy_ids)} copies: {', '.join(copy_ids)}")


@app.command("copies")
@handle_errors
def cli_copies(book_id: str):
    """List the copies of a book and their status."""
    print_copies(get_services().inventory.list_copies(book_id))


@app.command("copy-status")
@handle_errors
def cli_copy_status(copy_id: str, status: str):
    """Set a copy to Available, Damaged, Lost or Reserved."""
    new_status = CopyStatus.parse(status)
    if not get_services().inventory.set_status(copy_id, new_status):
        raise CopyNotFound(copy_id)
    print(f"Copy {copy_id} is now {new_status.value}.")


# ------------------------- Members and loans ------------------------- #
@app.command("register-member")
@handle_errors
def cli_register_member(
    name: str,
    email: str,
    role: str = typer.Option("member", "--role", help="member | admin"),
    member_id: Optional[str] = typer.Option(None, "--id"),
):
    """Register a library member."""
    member = get_services().members.register(name, email, role=role, member_id=member_id)
    _emit(member.to_dict(), f"Registered {member.name} as {member.member_id} ({member.role})")


@app.command("members")
@handle_errors
def cli_members():
    """List registered members."""
    members = get_services().members.list_all()
    if get_output_mode() == "json":
        print(json.dumps([m.to_dict() for m in members], ensure_ascii=False))
    elif not members:
        print("No members registered.")
    else:
        for m in members:
            print(f"{m.member_id} - {m.name} <{m.email}> [{m.role}]")


@app.command("borrow")
@handle_errors
def cli_borrow(book_id: str, member_id: str):
    """Borrow an available copy of a book for a member."""
    result = get_services().lending.borrow(book_id, member_id)
    _emit(
        result.to_dict(),
        f"{result.message}. Loan {result.borrowing_id}, copy {result.copy_id}, due {result.due_date.date().isoformat()}",
    )


@app.command("return")
@handle_errors
def cli_return(
    borrowing_id: str,
    member_id: Optional[str] = typer.Option(None, "--member", help="Only allow returning this member's loan"),
):
    """Return a loan by its borrowing ID."""
    services = get_services()
    identity = None
    if member_id:
        member = services.members.require(member_id)
        identity = Identity(member.member_id, member.role)
    result = services.lending.return_loan(borrowing_id, identity)
    _emit(result.to_dict(), f"{result.message} (copy {result.copy_id})")


@app.command("return-book")
@handle_errors
def cli_return_book(book_id: str):
    """Return one borrowed copy of a book without a borrowing ID."""
    result = get_services().lending.return_book(book_id)
    _emit(result.to_dict(), f"{result.message} (copy {result.copy_id})")


@app.command("loans")
@handle_errors
def cli_loans(
    member_id: str,
    history: bool = typer.Option(False, "--history", help="Include returned loans"),
):
    """Show a member's loans."""
    lending = get_services().lending
    if history:
        print_loans(lending.loan_history(member_id), empty_message="No loans.")
        return
    summary = lending.member_summary(member_id)
    if get_output_mode() == "json":
        print(json.dumps(summary.to_dict(), ensure_ascii=False))
        return
    print_loans(summary.loans)
    print(f"{summary.active_count}/{summary.limit} loans in use")


@app.command("stats")
@handle_errors
def cli_stats():
    """Show catalog and copy statistics."""
    print_stats_result(get_services().catalog.statistics())


@app.command("report")
@handle_errors
def cli_report(
    kind: str = typer.Argument("monthly", help="weekly, monthly, yearly, genres, authors or trends"),
    period: str = typer.Option("monthly", "--period", help="Bucket size for trends: weekly, monthly or yearly"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1),
):
    """Show borrowing analytics: popular books, genres, authors or trends."""
    analytics = get_services().analytics
    if kind == "genres":
        rows = analytics.genre_report()
    elif kind == "authors":
        rows = analytics.author_report(limit or AUTHOR_REPORT_LIMIT)
    elif kind == "trends":
        rows = analytics.borrowing_trends(period)
    else:
        rows = analytics.popular_books(kind, limit)
    print_report(kind, rows)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    env = dict(os.environ)
    if _state["db"]:
        env["LIBRARY_DB_FILE"] = _state["db"]
    args = [
        sys.executable,
        "-m", "uvicorn",
        "lending_library.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, env=env, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not start uvicorn. Is it installed?")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
