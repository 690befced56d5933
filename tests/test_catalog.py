import pytest

from library_app.errors import AccessDeniedError, AuthenticationError, ConflictError, NotFoundError, ValidationError
from library_app.security import Principal
from library_app.user import Role


def test_add_list_and_find(services, admin):
    assert services.catalog.list_books() == []

    book = services.catalog.add_book(
        admin, title="  Ulysses ", author="James Joyce", publication_year=1922, total_copies=4,
        category="Fiction", isbn="9780199535675", shelf_number="B-12", image="/img/ulysses.jpg",
    )

    assert book.id is not None
    assert book.title == "Ulysses"
    assert book.available_copies == book.total_copies == 4
    found = services.catalog.get_book(book.id)
    assert found.shelf_number == "B-12"
    assert [b.title for b in services.catalog.list_books()] == ["Ulysses"]


def test_list_newest_first(make_book, services):
    make_book("First")
    make_book("Second")
    assert [b.title for b in services.catalog.list_books()] == ["Second", "First"]


@pytest.mark.parametrize(
    "fields",
    [
        {"title": "", "author": "A", "publication_year": 2000, "total_copies": 1},
        {"title": "T", "author": "   ", "publication_year": 2000, "total_copies": 1},
        {"title": "T", "author": "A", "publication_year": None, "total_copies": 1},
        {"title": "T", "author": "A", "publication_year": 2000, "total_copies": -1},
        {"title": "T", "author": "A", "publication_year": 99999, "total_copies": 1},
    ],
)
def test_add_book_validation(services, admin, fields):
    with pytest.raises(ValidationError):
        services.catalog.add_book(admin, **fields)
    assert services.catalog.list_books() == []


def test_catalog_mutations_require_admin(services, member, make_book):
    book = make_book()
    with pytest.raises(AccessDeniedError):
        services.catalog.add_book(member, title="T", author="A", publication_year=2000, total_copies=1)
    with pytest.raises(AccessDeniedError):
        services.catalog.update_book(member, book.id, title="New")
    with pytest.raises(AccessDeniedError):
        services.catalog.remove_book(member, book.id)


def test_update_book_partial(services, admin, make_book):
    book = make_book("Old Title", copies=2)

    updated = services.catalog.update_book(admin, book.id, title="New Title", shelf_number="C-3")

    assert updated.title == "New Title"
    assert updated.author == "Frank Herbert"
    assert updated.shelf_number == "C-3"
    assert (updated.available_copies, updated.total_copies) == (2, 2)


def test_update_book_nothing_or_missing(services, admin, make_book):
    book = make_book()
    with pytest.raises(ValidationError):
        services.catalog.update_book(admin, book.id)
    with pytest.raises(NotFoundError):
        services.catalog.update_book(admin, 999, title="Ghost")
    with pytest.raises(ValidationError):
        services.catalog.update_book(admin, book.id, pages=300)


def test_shrinking_copies_keeps_lent_out_count(services, admin, member, make_book):
    book = make_book("Hamlet", copies=5)
    for _ in range(3):
        services.circulation.borrow_book(member, book.id)
    assert services.catalog.get_book(book.id).available_copies == 2

    with pytest.raises(ConflictError):
        services.catalog.update_book(admin, book.id, total_copies=2, title="Renamed")
    unchanged = services.catalog.get_book(book.id)
    assert (unchanged.title, unchanged.available_copies, unchanged.total_copies) == ("Hamlet", 2, 5)

    shrunk = services.catalog.update_book(admin, book.id, total_copies=3)
    assert (shrunk.available_copies, shrunk.total_copies) == (0, 3)


def test_growing_copies_adds_availability(services, admin, member, make_book):
    book = make_book(copies=1)
    services.circulation.borrow_book(member, book.id)

    grown = services.catalog.update_book(admin, book.id, total_copies=4)

    assert (grown.available_copies, grown.total_copies) == (3, 4)


def test_remove_book(services, admin, member, make_book):
    book = make_book()
    borrow = services.circulation.borrow_book(member, book.id)
    with pytest.raises(ConflictError):
        services.catalog.remove_book(admin, book.id)

    services.circulation.return_book(admin, borrow.id)
    # returned borrows stay in the history, so the book stays too
    with pytest.raises(ConflictError):
        services.catalog.remove_book(admin, book.id)
    assert [r["title"] for r in services.circulation.borrow_history(admin)] == ["Dune"]

    unread = make_book("Emma")
    services.catalog.remove_book(admin, unread.id)

    with pytest.raises(NotFoundError):
        services.catalog.get_book(unread.id)
    with pytest.raises(NotFoundError):
        services.catalog.remove_book(admin, unread.id)


def test_search_rules(services, member, make_book):
    for i in range(10):
        make_book(f"Python Recipes {i}", author="Guido", isbn=f"97800000000{i:02d}")
    make_book("Emma", author="Jane Austen", isbn="9780141439587")

    assert services.catalog.search_books(member, "p") == []
    assert services.catalog.search_books(member, " e ") == []

    results = services.catalog.search_books(member, "python")
    assert len(results) == 8
    assert [b.id for b in results] == sorted(b.id for b in results)
    # same input, same order
    assert [b.id for b in results] == [b.id for b in services.catalog.search_books(member, "Python")]

    assert [b.title for b in services.catalog.search_books(member, "austen")] == ["Emma"]
    assert [b.title for b in services.catalog.search_books(member, "141439")] == ["Emma"]


def test_search_treats_wildcards_literally(services, member, make_book):
    make_book("100% Wool")
    make_book("Plain")
    assert [b.title for b in services.catalog.search_books(member, "0%")] == ["100% Wool"]
    assert services.catalog.search_books(member, "__") == []


def test_search_needs_authentication(services):
    pending = Principal(user_id=1, role=Role.PENDING)
    assert services.catalog.search_books(pending, "anything") == []
    with pytest.raises(AuthenticationError):
        services.catalog.search_books(None, "anything")
