import json
import os
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .book import Book
from .inventory import Copy
from .ledger import LoanDetails

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: Sequence[Book], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'ID - Title by Author' lines, or the empty message
    - json: JSON array of book records
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Genre", style="green")
        table.add_column("Year", justify="right")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.genre or "", str(b.publication_year or ""))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author}")


def print_book_detail(book: Book, stats: Dict[str, int]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({**book.to_dict(), "copies": stats}, ensure_ascii=False))
        return
    lines = [
        f"Title: {book.title}",
        f"Author: {book.author}",
        f"ID: {book.id}",
        f"ISBN: {book.isbn or '-'}",
        f"Genre: {book.genre or '-'}",
        f"Year: {book.publication_year or '-'}",
        f"Copies: {stats['available']} available / {stats['total']} total",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="Book Found", border_style="blue"))
    else:
        print("Book Found")
        for line in lines:
            print(line)


def print_copies(copies: List[Copy]) -> None:
    mode = get_output_mode()
    if not copies:
        print("No copies for this book.")
        return
    if mode == "json":
        print(json.dumps([c.to_dict() for c in copies], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Copies", header_style="bold cyan")
        table.add_column("Copy ID", style="magenta")
        table.add_column("Status")
        for c in copies:
            style = "green" if c.is_available else "yellow"
            table.add_row(c.copy_id, f"[{style}]{c.status.value}[/]")
        _console.print(table)
    else:
        for c in copies:
            print(f"{c.copy_id} - {c.status.value}")


def print_loans(loans: List[LoanDetails], empty_message: str = "No open loans.") -> None:
    mode = get_output_mode()
    if not loans:
        print(empty_message)
        return
    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Loans", header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Copy")
        table.add_column("Member")
        table.add_column("Due")
        for d in loans:
            due = d.loan.due_at.date().isoformat()
            if d.loan.is_overdue():
                due = f"[red]{due}[/]"
            table.add_row(d.loan.borrowing_id, d.title, d.loan.copy_id, d.member_name or d.loan.member_id, due)
        _console.print(table)
    else:
        for d in loans:
            status = "returned" if not d.loan.is_open else f"due {d.loan.due_at.date().isoformat()}"
            print(f"{d.loan.borrowing_id} - {d.title} [{d.loan.copy_id}] {status}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    lines = [
        f"Total Books: {stats.get('total_books', 0)}",
        f"Unique Authors: {stats.get('unique_authors', 0)}",
        f"Total Copies: {stats.get('total_copies', 0)}",
        f"Available Copies: {stats.get('available_copies', 0)}",
        f"Borrowed Copies: {stats.get('borrowed_copies', 0)}",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="📊 Stats", border_style="blue"))
    else:
        for line in lines:
            print(line)


def _report_line(kind: str, row: Dict[str, Any]) -> str:
    if kind == "genres":
        return (f"{row['genre']}: {row['total_borrows']} total "
                f"({row['weekly_borrows']} week, {row['monthly_borrows']} month, {row['yearly_borrows']} year)")
    if kind == "authors":
        return f"{row['author']}: {row['total_borrows']} borrows across {row['unique_books']} books"
    if kind == "trends":
        return f"{row['period_start']} to {row['period_end']}: {row['borrow_count']} borrows"
    return f"{row['book_id']} - {row['title']} by {row['author']}: {row['period_borrows']} ({row['total_borrows']} total)"


def print_report(kind: str, rows: List[Dict[str, Any]]) -> None:
    """Print a borrowing report in the current output mode."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
        return
    if not rows:
        print("No borrowing activity.")
        return
    if mode == "rich":
        table = Table(title=f"Borrowing report: {kind}", header_style="bold cyan")
        for column in rows[0]:
            table.add_column(column.replace("_", " ").title())
        for row in rows:
            table.add_row(*("" if value is None else str(value) for value in row.values()))
        _console.print(table)
    else:
        for row in rows:
            print(_report_line(kind, row))
