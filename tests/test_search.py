import pytest

from lending_library.errors import InvalidInput
from lending_library.search import SearchParams


@pytest.fixture
def catalog(services):
    books = [
        {"id": "B001", "title": "1984", "author": "George Orwell", "genre": "Dystopian", "publication_year": 1949},
        {"id": "B002", "title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi", "publication_year": 1965},
        {"id": "B003", "title": "Neuromancer", "author": "William Gibson", "genre": "Sci-Fi",
         "publication_year": 1984},
        {"id": "B004", "title": "The Left Hand of Darkness", "author": "Ursula K. Le Guin", "genre": "Sci-Fi",
         "publication_year": 1969},
        {"id": "B005", "title": "Animal Farm", "author": "George Orwell", "genre": "Satire",
         "publication_year": 1945, "description": "All animals are equal_ish"},
        {"id": "B006", "title": "Emma", "author": "Jane Austen", "genre": "Classic"},
    ]
    for data in books:
        services.catalog.create(data)
    return services


def ids(result):
    return [b.id for b in result.books]


def test_search_by_author_text(catalog):
    result = catalog.search.search(SearchParams.from_mapping(
        {"searchTerm": "Orwell", "searchByTitle": False, "searchById": False}
    ))

    assert ids(result) == ["B001", "B005"]
    assert result.total_count == 2
    assert all(b.author == "George Orwell" for b in result.books)


def test_search_single_match_total_count(catalog):
    result = catalog.search.search(search_term="gibson")
    assert ids(result) == ["B003"]
    assert result.total_count == 1


def test_genre_filter_sorted_by_year_desc(catalog):
    result = catalog.search.search(SearchParams.from_mapping(
        {"filterByGenre": "Sci-Fi", "sortBy": "publicationYear", "sortOrder": "desc"}
    ))

    assert ids(result) == ["B003", "B004", "B002"]
    assert [b.publication_year for b in result.books] == [1984, 1969, 1965]
    assert result.sort_by == "publicationYear"
    assert result.sort_order == "desc"


def test_genre_filter_is_exact(catalog):
    assert catalog.search.search(filter_by_genre="sci-fi").books == []
    assert catalog.search.search(filter_by_genre="Sci").books == []


def test_empty_query_returns_whole_catalog_in_default_order(catalog):
    result = catalog.search.search()
    assert ids(result) == ["B002", "B001", "B005", "B006", "B004", "B003"]
    assert result.total_count == 6


def test_empty_catalog(services):
    result = services.search.search(search_term="anything")
    assert result.books == []
    assert result.total_count == 0


def test_search_by_id_or_title_only(catalog):
    assert ids(catalog.search.search(search_term="B00", search_by_id=True)) == [
        "B002", "B001", "B005", "B006", "B004", "B003"
    ]
    assert ids(catalog.search.search(search_term="1984", search_by_title=True)) == ["B001"]
    # Neuromancer was published in 1984 but the year is not a text field
    assert ids(catalog.search.search(search_term="1984")) == ["B001"]
    assert ids(catalog.search.search(search_term="orwell", search_by_title=True)) == []


def test_like_wildcards_are_literal(catalog):
    assert ids(catalog.search.search(search_term="_ish")) == ["B005"]
    assert catalog.search.search(search_term="%").books == []


def test_blank_term_means_no_text_filter(catalog):
    assert catalog.search.search(search_term="   ").total_count == 6


def test_results_are_deterministic(catalog):
    catalog.catalog.create({"id": "B007", "title": "Dune", "author": "Someone", "genre": "Sci-Fi"})
    first = ids(catalog.search.search(sort_by="title"))
    for _ in range(3):
        assert ids(catalog.search.search(sort_by="title")) == first
    # Equal titles fall back to ID order
    assert first.index("B002") + 1 == first.index("B007")


def test_invalid_sort_order_is_rejected(catalog):
    with pytest.raises(InvalidInput):
        catalog.search.search(sort_by="title", sort_order="sideways")


def test_unknown_sort_key_falls_back_to_default_order(catalog):
    result = catalog.search.search(sort_by="rating", sort_order="desc")
    assert ids(result) == ids(catalog.search.search())
    assert result.sort_by is None


def test_unknown_parameter_is_rejected(services):
    with pytest.raises(InvalidInput):
        SearchParams.from_mapping({"colour": "blue"})


def test_search_simple_requires_term(catalog):
    assert [b.id for b in catalog.search.search_simple("dune")] == ["B002"]
    with pytest.raises(InvalidInput):
        catalog.search.search_simple("  ")


def test_books_by_genre_and_sorted_books(catalog):
    assert [b.id for b in catalog.search.books_by_genre("Sci-Fi", sort_by="title")] == ["B002", "B003", "B004"]
    assert [b.id for b in catalog.search.sorted_books("id", "desc")][:2] == ["B006", "B005"]
    with pytest.raises(InvalidInput):
        catalog.search.books_by_genre("")


def test_include_availability(catalog, member):
    catalog.inventory.create_copy("B002")
    catalog.inventory.create_copy("B002")
    catalog.lending.borrow("B002", member.member_id)

    result = catalog.search.search(filter_by_genre="Sci-Fi", include_availability=True)
    data = result.to_dict()

    copies = {book["id"]: book["copies"] for book in data["books"]}
    assert copies["B002"] == {"total": 2, "available": 1, "borrowed": 1}
    assert copies["B003"] == {"total": 0, "available": 0, "borrowed": 0}
    assert data["total_count"] == 3


def test_search_folds_non_ascii_case(services):
    services.catalog.create({"id": "R1", "title": "Émile", "author": "Jean-Jacques Rousseau"})
    services.catalog.create({"id": "G1", "title": "Die Straße", "author": "Ödön von Horváth"})

    assert ids(services.search.search(search_term="émile")) == ["R1"]
    assert ids(services.search.search(search_term="ÖDÖN")) == ["G1"]
    assert ids(services.search.search(search_term="STRASSE", search_by_title=True)) == ["G1"]


@pytest.mark.parametrize(
    "value, expected",
    [("false", False), ("False", False), ("0", False), ("true", True), ("1", True), (True, True)],
)
def test_string_flags_are_coerced(value, expected):
    params = SearchParams.from_mapping({"searchById": value})
    assert params.search_by_id is expected


def test_non_boolean_flag_is_rejected():
    with pytest.raises(InvalidInput):
        SearchParams.from_mapping({"includeAvailability": "maybe"})
    with pytest.raises(InvalidInput):
        SearchParams(search_by_title=2)


def test_false_string_flag_searches_all_fields(catalog):
    result = catalog.search.search(SearchParams.from_mapping({"searchTerm": "Orwell", "searchById": "false"}))
    assert ids(result) == ["B001", "B005"]
