import threading
from datetime import datetime, timedelta, timezone

import pytest

from lending_library.errors import (
    BookNotFound,
    BorrowingLimitExceeded,
    CopyNotAvailable,
    InvalidInput,
    LibraryError,
    LoanNotFound,
    MemberNotFound,
    NoBorrowedCopy,
    NoCopyAvailable,
    NotAuthorized,
)
from lending_library.inventory import CopyStatus, SQLiteCopyInventory
from lending_library.lending import LendingService
from lending_library.members import Identity


def assert_borrowed_copies_match_open_loans(services):
    with services.db.connect() as conn:
        borrowed = {r[0] for r in conn.execute("SELECT CopyID FROM copies WHERE Status = 'Borrowed'")}
        on_loan = [r[0] for r in conn.execute("SELECT CopyID FROM loans WHERE ReturnedAt IS NULL")]
    assert sorted(borrowed) == sorted(on_loan)


def add_book(services, book_id, copies=1, **fields):
    data = {"id": book_id, "title": f"Title {book_id}", "author": "Author", **fields}
    services.catalog.create(data)
    for _ in range(copies):
        services.inventory.create_copy(book_id)


def test_borrow_single_copy_then_no_copy_available(services, member, admin):
    add_book(services, "X")

    result = services.lending.borrow("X", member.member_id)

    assert result.success is True
    assert services.inventory.get_copy(result.copy_id).status is CopyStatus.BORROWED
    assert services.lending.active_loan_count(member.member_id) == 1
    assert services.lending.is_available("X") is False

    with pytest.raises(NoCopyAvailable):
        services.lending.borrow("X", admin.member_id)
    assert_borrowed_copies_match_open_loans(services)


def test_fourth_borrow_exceeds_limit_without_touching_copies(services, member):
    for book_id in ("A", "B", "C", "D"):
        add_book(services, book_id)
    for book_id in ("A", "B", "C"):
        services.lending.borrow(book_id, member.member_id)

    with pytest.raises(BorrowingLimitExceeded) as exc_info:
        services.lending.borrow("D", member.member_id)

    assert exc_info.value.context == {"member_id": member.member_id, "limit": 3}
    assert services.inventory.stats_for_book("D").available == 1
    assert services.lending.active_loan_count(member.member_id) == 3
    assert_borrowed_copies_match_open_loans(services)


def test_return_restores_copy_for_next_borrower(services, member, admin):
    add_book(services, "X")
    loan = services.lending.borrow("X", member.member_id)

    returned = services.lending.return_loan(loan.borrowing_id)

    assert returned.copy_id == loan.copy_id
    assert services.inventory.get_copy(loan.copy_id).status is CopyStatus.AVAILABLE
    assert services.lending.active_loan_count(member.member_id) == 0
    assert services.lending.borrow("X", admin.member_id).copy_id == loan.copy_id
    assert_borrowed_copies_match_open_loans(services)


def test_due_date_is_fourteen_days_after_borrow(services, member):
    add_book(services, "X")
    now = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    lending = LendingService(
        services.db, services.catalog, services.inventory, services.ledger, services.members,
        clock=lambda: now,
    )

    result = lending.borrow("X", member.member_id)

    assert result.due_date == now + timedelta(days=14)
    loan = lending.loan(result.borrowing_id)
    assert loan.borrowed_at == now
    assert loan.due_at == now + timedelta(days=14)


def test_custom_policy_is_injected(services, member):
    add_book(services, "A")
    add_book(services, "B")
    lending = LendingService(
        services.db, services.catalog, services.inventory, services.ledger, services.members,
        max_active_loans=1, loan_period=timedelta(days=7),
    )

    lending.borrow("A", member.member_id)
    with pytest.raises(BorrowingLimitExceeded):
        lending.borrow("B", member.member_id)


def test_double_return_fails(services, member):
    add_book(services, "X")
    loan = services.lending.borrow("X", member.member_id)
    services.lending.return_loan(loan.borrowing_id)

    with pytest.raises(LoanNotFound):
        services.lending.return_loan(loan.borrowing_id)
    assert services.inventory.get_copy(loan.copy_id).status is CopyStatus.AVAILABLE


def test_members_return_only_their_own_loans(services, member, admin):
    other = services.members.register("Linus", "linus@example.org", member_id="M200")
    add_book(services, "X", copies=2)
    loan = services.lending.borrow("X", member.member_id)

    with pytest.raises(NotAuthorized):
        services.lending.return_loan(loan.borrowing_id, Identity(other.member_id))
    assert services.lending.loan(loan.borrowing_id).is_open

    # Admins may return on anyone's behalf
    services.lending.return_loan(loan.borrowing_id, Identity(admin.member_id, "admin"))
    assert not services.lending.loan(loan.borrowing_id).is_open


def test_borrow_errors(services, member):
    add_book(services, "X")

    with pytest.raises(BookNotFound):
        services.lending.borrow("missing", member.member_id)
    with pytest.raises(MemberNotFound):
        services.lending.borrow("X", "nobody")
    with pytest.raises(InvalidInput):
        services.lending.borrow("  ", member.member_id)
    assert services.inventory.stats_for_book("X").available == 1


def test_return_book_without_loan_id(services, member):
    add_book(services, "X", copies=2)
    loan = services.lending.borrow("X", member.member_id)

    result = services.lending.return_book("X")

    assert result.borrowing_id == loan.borrowing_id
    assert services.lending.active_loan_count(member.member_id) == 0
    with pytest.raises(NoBorrowedCopy):
        services.lending.return_book("X")
    assert_borrowed_copies_match_open_loans(services)


def test_member_summary_and_history(services, member):
    add_book(services, "A")
    add_book(services, "B")
    first = services.lending.borrow("A", member.member_id)
    services.lending.borrow("B", member.member_id)
    services.lending.return_loan(first.borrowing_id)

    summary = services.lending.member_summary(member.member_id)
    assert summary.active_count == 1
    assert summary.remaining == 2
    assert [d.book_id for d in summary.loans] == ["B"]

    history = services.lending.loan_history(member.member_id)
    assert {d.book_id for d in history} == {"A", "B"}
    assert [d.loan.is_open for d in history if d.book_id == "A"] == [False]


def test_book_details(services, stocked_book, member):
    services.lending.borrow(stocked_book.id, member.member_id)

    details = services.lending.book_details(stocked_book.id)

    assert details["book"] == stocked_book
    assert details["stats"].available == 1
    assert details["stats"].borrowed == 1
    assert [c.status for c in details["copies"]] == [CopyStatus.BORROWED, CopyStatus.AVAILABLE]


def test_concurrent_borrows_respect_member_limit(services, member):
    for i in range(6):
        add_book(services, f"B{i}")
    outcomes = []
    lock = threading.Lock()

    def attempt(book_id):
        try:
            services.lending.borrow(book_id, member.member_id)
            outcome = "ok"
        except LibraryError as e:
            outcome = e.code
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(f"B{i}",)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 3
    assert outcomes.count("borrowing_limit_exceeded") == 3
    assert services.lending.active_loan_count(member.member_id) == 3
    assert_borrowed_copies_match_open_loans(services)


def test_concurrent_borrows_never_share_a_copy(services):
    add_book(services, "X", copies=2)
    members = [services.members.register(f"Reader {i}", f"r{i}@example.org").member_id for i in range(5)]
    copies = []
    lock = threading.Lock()

    def attempt(member_id):
        try:
            result = services.lending.borrow("X", member_id)
        except NoCopyAvailable:
            return
        with lock:
            copies.append(result.copy_id)

    threads = [threading.Thread(target=attempt, args=(m,)) for m in members]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(copies) == 2
    assert len(set(copies)) == 2
    assert services.inventory.stats_for_book("X").available == 0
    assert_borrowed_copies_match_open_loans(services)


class RacyInventory(SQLiteCopyInventory):
    """Loses the first ``losses`` Available -> Borrowed swaps, as an unserialised store could."""

    def __init__(self, db, losses):
        super().__init__(db)
        self.losses = losses

    def transition(self, copy_id, expected, new, conn=None):
        if expected is CopyStatus.AVAILABLE and self.losses > 0:
            self.losses -= 1
            return False
        return super().transition(copy_id, expected, new, conn)


def test_lost_copy_swap_is_retried(services, member):
    add_book(services, "X")
    inventory = RacyInventory(services.db, losses=2)
    lending = LendingService(services.db, services.catalog, inventory, services.ledger, services.members)

    result = lending.borrow("X", member.member_id)

    assert inventory.losses == 0
    assert services.inventory.get_copy(result.copy_id).status is CopyStatus.BORROWED


def test_copy_swap_gives_up_after_retry_attempts(services, member):
    add_book(services, "X")
    inventory = RacyInventory(services.db, losses=5)
    lending = LendingService(services.db, services.catalog, inventory, services.ledger, services.members,
                             retry_attempts=3)

    with pytest.raises(CopyNotAvailable):
        lending.borrow("X", member.member_id)

    assert inventory.losses == 2
    assert services.lending.active_loan_count(member.member_id) == 0
