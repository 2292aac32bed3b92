import pytest

from lending_library.database import Database
from lending_library.services import build_services


@pytest.fixture
def services(tmp_path, request):
    # A unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    yield build_services(Database(db_file))


@pytest.fixture
def member(services):
    return services.members.register("Grace Hopper", "grace@example.org", member_id="M100")


@pytest.fixture
def admin(services):
    return services.members.register("Ada Admin", "ada@example.org", role="admin", member_id="M900")


@pytest.fixture
def stocked_book(services):
    """A book with two Available copies."""
    book = services.catalog.create({"id": "B1", "title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi"})
    services.inventory.create_copy(book.id)
    services.inventory.create_copy(book.id)
    return book
