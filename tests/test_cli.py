import json
import re
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lending_library.cli import app
from lending_library.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # set_output_mode writes to os.environ; monkeypatch restores it afterwards
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


@pytest.fixture
def db(tmp_path, request):
    return str(tmp_path / f"cli_{request.node.name}.db")


def invoke(db, *args):
    return runner.invoke(app, ["--db", db, *args])


def test_list_no_books(db):
    result = invoke(db, "list")
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_and_find(db):
    result = invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert", "--copies", "2")
    assert result.exit_code == 0
    assert "Successfully added: Dune by Frank Herbert" in result.stdout

    result = invoke(db, "find", "B1")
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Dune" in result.stdout
    assert "Copies: 2 available / 2 total" in result.stdout


def test_find_missing_book_exits_with_error(db):
    result = invoke(db, "find", "nope")
    assert result.exit_code == 1
    assert "Error: Book 'nope' not found" in result.stdout


def test_invalid_input_exits_with_error(db):
    result = invoke(db, "add", "--title", "Dune", "--author", "   ")
    assert result.exit_code == 1
    assert "Error: Author cannot be empty" in result.stdout


def test_update_and_remove(db):
    invoke(db, "add", "--id", "B1", "--title", "Old", "--author", "Someone")

    result = invoke(db, "update", "B1", "--title", "New")
    assert result.exit_code == 0
    assert "Updated: New by Someone" in result.stdout

    result = invoke(db, "remove", "B1")
    assert result.exit_code == 0
    assert "Book with ID B1 has been removed." in result.stdout

    result = invoke(db, "remove", "B1")
    assert result.exit_code == 1


def test_seed_list_and_search(db):
    result = invoke(db, "seed")
    assert result.exit_code == 0
    assert "Seeded 6 books" in result.stdout

    result = invoke(db, "seed")
    assert "nothing seeded" in result.stdout

    result = invoke(db, "search", "--genre", "Sci-Fi", "--sort-by", "publicationYear", "--order", "desc")
    assert result.exit_code == 0
    lines = [line for line in result.stdout.splitlines() if " by " in line]
    assert lines == [
        "B003 - Neuromancer by William Gibson",
        "B004 - The Left Hand of Darkness by Ursula K. Le Guin",
        "B002 - Dune by Frank Herbert",
    ]

    result = invoke(db, "genres")
    assert result.stdout.split() == ["Classic", "Dystopian", "Fantasy", "Sci-Fi"]


def test_json_output(db):
    invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert")

    result = runner.invoke(app, ["--db", db, "--output", "json", "list"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["id"] == "B1"


def test_borrow_and_return(db):
    invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert", "--copies", "1")
    invoke(db, "register-member", "Grace Hopper", "grace@example.org", "--id", "M1")

    result = invoke(db, "borrow", "B1", "M1")
    assert result.exit_code == 0
    assert 'Book "Dune" borrowed successfully' in result.stdout

    result = invoke(db, "borrow", "B1", "M1")
    assert result.exit_code == 1
    assert "Error: No available copies for book 'B1'" in result.stdout

    result = invoke(db, "loans", "M1")
    assert "1/3 loans in use" in result.stdout

    result = invoke(db, "return-book", "B1")
    assert result.exit_code == 0
    assert 'Book "Dune" returned successfully' in result.stdout


def test_return_by_loan_id(db):
    invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert", "--copies", "1")
    invoke(db, "register-member", "Grace Hopper", "grace@example.org", "--id", "M1")
    borrowed = invoke(db, "borrow", "B1", "M1")
    borrowing_id = re.search(r"Loan (loan-[0-9a-f]+)", borrowed.stdout).group(1)

    result = invoke(db, "return", borrowing_id, "--member", "M1")
    assert result.exit_code == 0
    assert "Book returned successfully (copy COPY-001)" in result.stdout

    result = invoke(db, "return", borrowing_id)
    assert result.exit_code == 1


def test_copies_and_copy_status(db):
    invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert")

    result = invoke(db, "add-copy", "B1", "--count", "2")
    assert "Added 2 copies: COPY-001, COPY-002" in result.stdout

    result = invoke(db, "copy-status", "COPY-002", "lost")
    assert result.exit_code == 0
    assert "Copy COPY-002 is now Lost." in result.stdout

    result = invoke(db, "copies", "B1")
    assert "COPY-001 - Available" in result.stdout
    assert "COPY-002 - Lost" in result.stdout


def test_stats(db):
    invoke(db, "seed")
    result = invoke(db, "stats")
    assert result.exit_code == 0
    assert "Total Books: 6" in result.stdout
    assert "Total Copies: 10" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, db):
    result = invoke(db, "serve", "--port", "9001")
    assert result.exit_code == 0
    assert "Starting API on http://" in result.stdout
    args = mock_subprocess_run.call_args[0][0]
    assert "lending_library.api:app" in args
    assert mock_subprocess_run.call_args[1]["env"]["LIBRARY_DB_FILE"] == db


def test_report(db):
    invoke(db, "add", "--id", "B1", "--title", "Dune", "--author", "Frank Herbert", "--genre", "Sci-Fi",
           "--copies", "1")
    invoke(db, "register-member", "Grace Hopper", "grace@example.org", "--id", "M1")

    result = invoke(db, "report", "weekly")
    assert result.exit_code == 0
    assert "No borrowing activity." in result.stdout

    invoke(db, "borrow", "B1", "M1")

    result = invoke(db, "report", "weekly")
    assert "B1 - Dune by Frank Herbert: 1 (1 total)" in result.stdout

    result = invoke(db, "report", "authors")
    assert "Frank Herbert: 1 borrows across 1 books" in result.stdout

    result = invoke(db, "report", "genres")
    assert "Sci-Fi: 1 total (1 week, 1 month, 1 year)" in result.stdout

    result = invoke(db, "report", "daily")
    assert result.exit_code == 1
    assert "Error: Invalid period" in result.stdout
