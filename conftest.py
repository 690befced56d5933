import pytest
from fastapi.testclient import TestClient

from library_app.api import create_app
from library_app.config import Settings
from library_app.container import build_services
from library_app.database import Database
from library_app.security import Principal
from library_app.user import Role


@pytest.fixture
def settings(tmp_path, request):
    # Unique database file per test; cheap bcrypt rounds keep the suite fast
    return Settings(
        database_file=str(tmp_path / f"test_{request.node.name}.db"),
        jwt_secret_key="test-secret",
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_file, timeout=settings.database_timeout).initialize()
    yield database
    database.close()


@pytest.fixture
def services(settings, db):
    return build_services(settings, db)


@pytest.fixture
def admin(services):
    user = services.membership.bootstrap_admin("Ava Admin", "admin@example.com", "admin-pass")
    return Principal(user_id=user.id, role=Role.ADMIN)


@pytest.fixture
def make_member(services, admin):
    """Factory creating approved members: ``make_member("alice")``."""
    def _make(name: str = "alice") -> Principal:
        user = services.membership.create_user(admin, name.title(), f"{name}@example.com", "secret-pass")
        return Principal(user_id=user.id, role=Role.MEMBER)
    return _make


@pytest.fixture
def member(make_member):
    return make_member("alice")


@pytest.fixture
def make_book(services, admin):
    """Factory adding a book: ``make_book("Dune", copies=2)``."""
    def _make(title: str = "Dune", copies: int = 1, **fields):
        fields.setdefault("author", "Frank Herbert")
        fields.setdefault("publication_year", 1965)
        return services.catalog.add_book(admin, title=title, total_copies=copies, **fields)
    return _make


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
