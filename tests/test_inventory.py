import pytest

from lending_library.errors import BookNotFound, CopyNotAvailable, InvalidInput, NoCopyAvailable
from lending_library.inventory import CopyStatus


def borrowed_copies(services) -> int:
    with services.db.connect() as conn:
        return conn.execute("SELECT COUNT(*) FROM copies WHERE Status = 'Borrowed'").fetchone()[0]


def open_loans(services) -> int:
    with services.db.connect() as conn:
        return conn.execute("SELECT COUNT(*) FROM loans WHERE ReturnedAt IS NULL").fetchone()[0]


def test_create_copy_requires_existing_book(services):
    with pytest.raises(BookNotFound):
        services.inventory.create_copy("missing")


def test_copy_ids_are_sequential_across_books(services):
    services.catalog.create({"id": "B1", "title": "One", "author": "A"})
    services.catalog.create({"id": "B2", "title": "Two", "author": "B"})

    ids = [
        services.inventory.create_copy("B1"),
        services.inventory.create_copy("B2"),
        services.inventory.create_copy("B1"),
    ]

    assert ids == ["COPY-001", "COPY-002", "COPY-003"]
    assert [c.copy_id for c in services.inventory.list_copies("B1")] == ["COPY-001", "COPY-003"]


def test_new_copies_are_available(services, stocked_book):
    copies = services.inventory.list_copies(stocked_book.id)
    assert all(c.status is CopyStatus.AVAILABLE for c in copies)

    stats = services.inventory.stats_for_book(stocked_book.id)
    assert (stats.total, stats.available, stats.borrowed) == (2, 2, 0)


def test_stats_for_book_without_copies(services):
    services.catalog.create({"id": "B1", "title": "One", "author": "A"})
    stats = services.inventory.stats_for_book("B1")
    assert (stats.total, stats.available, stats.borrowed) == (0, 0, 0)


def test_list_copies_for_missing_book(services):
    with pytest.raises(BookNotFound):
        services.inventory.list_copies("missing")


def test_set_status_for_maintenance(services, stocked_book):
    copy_id = services.inventory.list_copies(stocked_book.id)[0].copy_id

    assert services.inventory.set_status(copy_id, CopyStatus.DAMAGED) is True
    assert services.inventory.get_copy(copy_id).status is CopyStatus.DAMAGED
    assert services.inventory.stats_for_book(stocked_book.id).available == 1

    assert services.inventory.set_status(copy_id, "available") is True
    assert services.inventory.get_copy(copy_id).is_available


def test_set_status_cannot_create_borrowed_copies(services, stocked_book):
    copy_id = services.inventory.list_copies(stocked_book.id)[0].copy_id

    with pytest.raises(InvalidInput):
        services.inventory.set_status(copy_id, CopyStatus.BORROWED)
    assert borrowed_copies(services) == open_loans(services) == 0


def test_set_status_refuses_copies_out_on_loan(services, stocked_book, member):
    result = services.lending.borrow(stocked_book.id, member.member_id)

    with pytest.raises(CopyNotAvailable):
        services.inventory.set_status(result.copy_id, CopyStatus.AVAILABLE)
    assert services.inventory.get_copy(result.copy_id).status is CopyStatus.BORROWED


def test_set_status_unknown_copy_or_status(services):
    assert services.inventory.set_status("COPY-999", CopyStatus.LOST) is False
    with pytest.raises(InvalidInput):
        services.inventory.set_status("COPY-999", "Shredded")


def test_transition_is_compare_and_swap(services, stocked_book):
    copy_id = services.inventory.list_copies(stocked_book.id)[0].copy_id
    inventory = services.inventory

    assert inventory.transition(copy_id, CopyStatus.AVAILABLE, CopyStatus.RESERVED) is True
    assert inventory.transition(copy_id, CopyStatus.AVAILABLE, CopyStatus.RESERVED) is False
    assert inventory.get_copy(copy_id).status is CopyStatus.RESERVED


def test_damaged_copies_are_not_lent(services, stocked_book, member, admin):
    for copy in services.inventory.list_copies(stocked_book.id)[:1]:
        services.inventory.set_status(copy.copy_id, CopyStatus.DAMAGED)

    services.lending.borrow(stocked_book.id, member.member_id)

    with pytest.raises(NoCopyAvailable):
        services.lending.borrow(stocked_book.id, admin.member_id)
