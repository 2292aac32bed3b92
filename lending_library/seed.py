import logging
from typing import Dict, List

from .services import Services

logger = logging.getLogger(__name__)

DEMO_BOOKS: List[Dict[str, object]] = [
    {"id": "B001", "title": "1984", "author": "George Orwell", "isbn": "9780451524935",
     "genre": "Dystopian", "publication_year": 1949,
     "description": "A totalitarian regime watches everyone, all the time."},
    {"id": "B002", "title": "Dune", "author": "Frank Herbert", "isbn": "9780441172719",
     "genre": "Sci-Fi", "publication_year": 1965,
     "description": "Politics, ecology and prophecy on the desert planet Arrakis."},
    {"id": "B003", "title": "Neuromancer", "author": "William Gibson", "isbn": "9780441569595",
     "genre": "Sci-Fi", "publication_year": 1984},
    {"id": "B004", "title": "The Left Hand of Darkness", "author": "Ursula K. Le Guin", "isbn": "9780441478125",
     "genre": "Sci-Fi", "publication_year": 1969},
    {"id": "B005", "title": "Pride and Prejudice", "author": "Jane Austen", "isbn": "9780141439518",
     "genre": "Classic", "publication_year": 1813},
    {"id": "B006", "title": "The Hobbit", "author": "J.R.R. Tolkien", "isbn": "9780547928227",
     "genre": "Fantasy", "publication_year": 1937},
]

# Copies per demo book.
DEMO_COPIES = {"B001": 2, "B002": 3, "B003": 1, "B004": 1, "B005": 2, "B006": 1}

DEMO_MEMBERS = [
    {"member_id": "M001", "name": "Ada Admin", "email": "admin@library.local", "role": "admin"},
    {"member_id": "M002", "name": "Max Member", "email": "max@library.local", "role": "member"},
]


def seed_demo_data(services: Services) -> Dict[str, int]:
    """Populate an empty database with a small demo catalog. No-op if books exist."""
    if services.catalog.count() > 0:
        logger.info("Catalog already populated; skipping demo seed")
        return {"books": 0, "copies": 0, "members": 0}

    copies = 0
    for data in DEMO_BOOKS:
        book = services.catalog.create(data)
        for _ in range(DEMO_COPIES.get(book.id, 1)):
            services.inventory.create_copy(book.id)
            copies += 1

    members = 0
    for data in DEMO_MEMBERS:
        if services.members.get(data["member_id"]) is None:
            services.members.register(**data)
            members += 1

    logger.info(f"Seeded {len(DEMO_BOOKS)} books, {copies} copies, {members} members")
    return {"books": len(DEMO_BOOKS), "copies": copies, "members": members}
